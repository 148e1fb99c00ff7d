"""Service layer entry points for the page watcher."""

from __future__ import annotations

from .orchestrator import BatchOrchestrator  # noqa: F401
from .runner import JobRunner  # noqa: F401
from .sandbox import BrowserSandbox, RenderGateway, SingleFlight  # noqa: F401
from .scheduler import CheckScheduler  # noqa: F401

__all__ = [
    "BatchOrchestrator",
    "BrowserSandbox",
    "CheckScheduler",
    "JobRunner",
    "RenderGateway",
    "SingleFlight",
]
