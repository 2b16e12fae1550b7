"""Executor launchers - how executor processes get started.

This package provides:
- ExecutorLauncher: Abstract base class supervising one executor per prompt
- Launcher factory keyed by launch mode
- Built-in launchers: local subprocess (optionally via sudo) and shell template
"""

from agor_orchestrator.adapters.base import (
    ExecutorLauncher,
    ExecutorParams,
    ExecutorPayload,
    LaunchRequest,
)
from agor_orchestrator.adapters.factory import (
    create_launcher,
    get_supported_modes,
    register_launcher,
)
from agor_orchestrator.adapters.local import LocalLauncher, find_executor_path
from agor_orchestrator.adapters.template import TemplateLauncher, substitute_template_variables

__all__ = [
    # Base classes
    "ExecutorLauncher",
    "LaunchRequest",
    # Payload types
    "ExecutorParams",
    "ExecutorPayload",
    # Factory
    "create_launcher",
    "register_launcher",
    "get_supported_modes",
    # Launchers
    "LocalLauncher",
    "TemplateLauncher",
    "find_executor_path",
    "substitute_template_variables",
]
