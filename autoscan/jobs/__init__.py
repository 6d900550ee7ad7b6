"""Background jobs: scheduled profile scans and the position monitor."""

from .position_monitor import PositionMonitor
from .scheduler import ProfileScheduler


__all__ = ["PositionMonitor", "ProfileScheduler"]
