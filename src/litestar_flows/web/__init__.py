"""REST API for litestar-flows.

The controllers are registered by :class:`~litestar_flows.plugin.FlowsPlugin` when
``enable_api`` is set.
"""

from __future__ import annotations

from litestar_flows.web.controllers import EventController, ExecutionController, FlowController
from litestar_flows.web.exceptions import EXCEPTION_HANDLERS

__all__ = [
    "EXCEPTION_HANDLERS",
    "EventController",
    "ExecutionController",
    "FlowController",
]
