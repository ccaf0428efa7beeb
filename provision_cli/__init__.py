"""
Provisioning CLI - follow long-running server operations on a VPS control panel.
"""

from .cli import main
from .client import PanelClient
from .commands import CLICommands
from .config import Config, ExitCode
from .rescue import RescueMonitor
from .status import CanonicalStatus, estimate_percent, normalize_status
from .task import ReinstallMonitor, TaskPoller

__version__ = "1.0.0"
__all__ = [
    "main",
    "Config",
    "PanelClient",
    "CLICommands",
    "ExitCode",
    "CanonicalStatus",
    "normalize_status",
    "estimate_percent",
    "TaskPoller",
    "ReinstallMonitor",
    "RescueMonitor",
]
