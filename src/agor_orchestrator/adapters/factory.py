"""Executor launcher factory.

Launch modes register their launcher class here; configuration selects
one by name.
"""

from collections.abc import Callable

from agor_orchestrator.adapters.base import ExecutorLauncher
from agor_orchestrator.config import Settings
from agor_orchestrator.core.exceptions import UnsupportedLaunchModeError

# Registry of launcher classes by launch mode
_LAUNCHER_REGISTRY: dict[str, type[ExecutorLauncher]] = {}


def register_launcher(mode: str) -> Callable[[type[ExecutorLauncher]], type[ExecutorLauncher]]:
    """Decorator to register a launcher class for a launch mode.

    Usage:
        @register_launcher("local")
        class LocalLauncher(ExecutorLauncher):
            ...
    """

    def decorator(cls: type[ExecutorLauncher]) -> type[ExecutorLauncher]:
        _LAUNCHER_REGISTRY[mode] = cls
        return cls

    return decorator


def create_launcher(config: Settings, mode: str | None = None) -> ExecutorLauncher:
    """Create the launcher for the configured (or given) launch mode.

    Raises:
        UnsupportedLaunchModeError: If no launcher is registered for the mode
    """
    mode = (mode or config.executor_launch_mode).lower()
    launcher_class = _LAUNCHER_REGISTRY.get(mode)
    if launcher_class is None:
        raise UnsupportedLaunchModeError(mode, get_supported_modes())
    return launcher_class(config)  # type: ignore[call-arg]


def get_supported_modes() -> list[str]:
    return sorted(_LAUNCHER_REGISTRY)


def _register_builtin_launchers() -> None:
    # Import launcher modules to trigger registration
    # pylint: disable=import-outside-toplevel,unused-import
    from agor_orchestrator.adapters import local, template  # noqa: F401


_register_builtin_launchers()
