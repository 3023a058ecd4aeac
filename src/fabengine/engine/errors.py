"""Typed boot errors.

Every failure raised by a boot stage is classified by an ErrorKind. The
Sequencer decides centrally whether the kind is fatal (abort boot) or
recoverable (log and continue with the next stage).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of boot failures."""

    CONFIG = "config"
    CONNECTION = "connection"
    PERSISTENCE = "persistence"
    COLLABORATOR = "collaborator"

    @property
    def fatal(self) -> bool:
        """True if a failure of this kind must stop boot."""
        return self is ErrorKind.PERSISTENCE


class EngineError(Exception):
    """Base class for classified engine errors."""

    kind: ErrorKind = ErrorKind.COLLABORATOR

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    @property
    def fatal(self) -> bool:
        return self.kind.fatal

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.kind.value}] {self.stage}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


class ConfigError(EngineError):
    """Missing or corrupt persisted configuration."""

    kind = ErrorKind.CONFIG


class MachineConnectionError(EngineError):
    """The motion controller could not be reached."""

    kind = ErrorKind.CONNECTION


class PersistenceError(EngineError):
    """A required artifact could not be written to disk."""

    kind = ErrorKind.PERSISTENCE


class CollaboratorError(EngineError):
    """An external collaborator call failed."""

    kind = ErrorKind.COLLABORATOR


class StageTimeout(PersistenceError):
    """A stage exceeded the configured per-stage timeout."""


class BootError(Exception):
    """Raised by the Sequencer when boot aborts.

    Carries the name of the stage that failed and the original cause.
    """

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Boot failed in stage {stage}: {cause}")
        self.stage = stage
        self.cause = cause


def is_fatal(error: BaseException) -> bool:
    """Decide whether an error raised by a stage aborts boot.

    Classified errors defer to their kind. Anything unclassified is a
    bug or an unexpected condition and is treated as fatal.
    """
    if isinstance(error, EngineError):
        return error.fatal
    return True
