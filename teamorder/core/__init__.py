"""
Core module initialization.
Exports configuration, clock and error types.
"""

from teamorder.core.config import get_settings, Settings, EnvironmentMode
from teamorder.core.clock import Clock, SystemClock, FixedClock, get_clock
from teamorder.core.errors import OrderSessionError

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "Clock",
    "SystemClock",
    "FixedClock",
    "get_clock",
    "OrderSessionError",
]
