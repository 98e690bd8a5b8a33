"""
MCU Auto-Updater - scheduled firmware updates for a host-attached microcontroller

Version check, encrypted package retrieval, serial handover and SWD flashing.
"""

__version__ = "0.1.0"

from mcu_auto_updater.config import UpdaterConfig
from mcu_auto_updater.orchestrator import UpdateOrchestrator

__all__ = [
    "UpdaterConfig",
    "UpdateOrchestrator",
    "__version__",
]
