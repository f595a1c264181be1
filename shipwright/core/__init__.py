"""
shipwright.core - Foundation layer for the shipwright CLI.

Exports logging, repository layout, errors and the process runner.
"""

# Utils
from shipwright.core.utils import (
    # Logging
    log,
    Logger,
    # Constants
    REPO_MARKER,
    # Path utilities
    RepoLayout,
    find_repo_root,
    get_layout,
    # Filesystem utilities
    try_unlink,
    clear_directory,
    remove_tree,
)

# Errors
from shipwright.core.errors import (
    PipelineError,
    ToolNotFoundError,
    SubprocessFailure,
    TransientIOError,
    MissingArtifactError,
    MissingCacheError,
    RepoRootNotFoundError,
    ConfigError,
    ComboError,
)

# Process execution
from shipwright.core.process import (
    BUILD_ERROR_PATTERNS,
    Heartbeat,
    LineClassifier,
    ProcessResult,
    ProcessRunner,
    RetryPolicy,
    Severity,
    classified_printer,
    command_exists,
    ensure_command_exists,
    split_lines,
)

__all__ = [
    # Logging
    "log",
    "Logger",
    # Constants
    "REPO_MARKER",
    # Path utilities
    "RepoLayout",
    "find_repo_root",
    "get_layout",
    # Filesystem utilities
    "try_unlink",
    "clear_directory",
    "remove_tree",
    # Errors
    "PipelineError",
    "ToolNotFoundError",
    "SubprocessFailure",
    "TransientIOError",
    "MissingArtifactError",
    "MissingCacheError",
    "RepoRootNotFoundError",
    "ConfigError",
    "ComboError",
    # Process execution
    "BUILD_ERROR_PATTERNS",
    "Heartbeat",
    "LineClassifier",
    "ProcessResult",
    "ProcessRunner",
    "RetryPolicy",
    "Severity",
    "classified_printer",
    "command_exists",
    "ensure_command_exists",
    "split_lines",
]
