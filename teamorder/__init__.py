"""
                Team Order Sessions

Group food ordering for companies: time-boxed order sessions,
participant responses, deadline sweeps and change notifications.

Version: 1.0.0
"""

__version__ = "1.0.0"
