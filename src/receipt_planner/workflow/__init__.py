"""Workflow controller and session wiring."""

from .controller import TransitionResult, WorkflowController
from .session import SessionConfig, build_controller, build_session_config

__all__ = [
    "TransitionResult",
    "WorkflowController",
    "SessionConfig",
    "build_controller",
    "build_session_config",
]
