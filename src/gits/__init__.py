"""gits: Run a command in every Git repository under a directory."""

from ._version import __version__
from .core import (
    CommandResult,
    ConfigError,
    DiscoveryError,
    GitCommandError,
    GitOperations,
    GitRepository,
    GitsError,
    ProgressReporter,
    RemoteSyncState,
    RepositoryStatus,
    ResultAggregator,
    RunConfig,
    TaskOrchestrator,
    TaskState,
    app,
    build_filters,
    discover_repositories,
    inspect_status,
    run,
    run_command,
)
from .formatters import format_command_result, format_status_line
from .schema import get_tool_schema

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Errors
    "ConfigError",
    "DiscoveryError",
    "GitCommandError",
    "GitsError",
    # Models
    "CommandResult",
    "GitRepository",
    "RemoteSyncState",
    "RepositoryStatus",
    "RunConfig",
    "TaskState",
    # Operations
    "GitOperations",
    "ProgressReporter",
    "ResultAggregator",
    "TaskOrchestrator",
    # Functions
    "build_filters",
    "discover_repositories",
    "get_tool_schema",
    "inspect_status",
    "run",
    "run_command",
    # Formatters
    "format_command_result",
    "format_status_line",
]
