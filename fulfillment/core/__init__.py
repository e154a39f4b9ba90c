"""
Core module initialization.
Exports configuration and logging utilities.
"""

from fulfillment.core.config import (
    EnvironmentMode,
    OrderManagementMode,
    Settings,
    get_settings,
    setup_logging,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderManagementMode",
]
