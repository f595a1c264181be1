"""
Exception types raised by the release pipeline.

Stage code catches PipelineError subclasses, logs them and moves on to
the next target. RepoRootNotFoundError, ConfigError and ComboError end
the command.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipwright.core.process import ProcessResult


class PipelineError(RuntimeError):
    """Base class for pipeline failures."""


class ToolNotFoundError(PipelineError):
    """A required external tool is not on PATH."""

    def __init__(self, command: str):
        super().__init__(f"Command '{command}' does not exist")
        self.command = command


class SubprocessFailure(PipelineError):
    """An external process exited non-zero."""

    def __init__(self, message: str, result: "ProcessResult"):
        super().__init__(message)
        self.result = result


class TransientIOError(PipelineError):
    """A failure worth retrying (network fetch, locked file)."""


class MissingArtifactError(PipelineError):
    """An expected build output is absent."""


class MissingCacheError(MissingArtifactError):
    """The generator cache of a build directory is absent."""


class RepoRootNotFoundError(PipelineError):
    """No repository marker was found above the working directory."""


class ConfigError(PipelineError):
    """shipwright.yaml could not be loaded."""


class ComboError(PipelineError, ValueError):
    """A build combo names an unknown alias or an illegal field value."""
