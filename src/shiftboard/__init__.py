"""Shiftboard core package.

Shift-scheduling notification engine, organized into focused modules:

- **schedule**: Multi-unit schedule publishing with per-user change detection
- **registration**: Weekly availability submissions and manager force-assignment
- **broadcast**: One-shot scheduled broadcasts and immediate admin broadcasts
- **settings_service**: Settings reads with registration-window reconciliation
- **window**: Weekly registration window arithmetic on the UTC+7 civil clock
- **templating**: ``{placeholder}`` substitution for notification templates
- **notifications**: Dispatch, event resolution, fan-out and push transports
- **persistence**: Document store interface and SQLite implementation

The ``Shiftboard`` class wires every service from an ``AppConfig``.
"""

from .app import Shiftboard
from .config import AppConfig, load_config
from .version import __version__

__all__ = [
    "__version__",
    "AppConfig",
    "Shiftboard",
    "load_config",
]
