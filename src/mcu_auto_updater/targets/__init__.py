"""
Flash target registry.

Named debug interfaces and chip profiles handed to the programmer.
"""

from .registry import (
    DebugInterface,
    ChipProfile,
    INTERFACES,
    CHIPS,
    list_interfaces,
    list_chips,
    get_interface,
    get_chip,
    render_openocd_config,
)

__all__ = [
    "DebugInterface",
    "ChipProfile",
    "INTERFACES",
    "CHIPS",
    "list_interfaces",
    "list_chips",
    "get_interface",
    "get_chip",
    "render_openocd_config",
]
