"""Error taxonomy for PhaseKit.

Fatal errors are raised and abort the current operation. Non-fatal
conditions (dangling index references, unmatched tasks) are instances of the
same hierarchy but are collected into operation results instead of raised.
"""

from __future__ import annotations

from typing import List, Optional


class PhaseKitError(Exception):
    """Base class for every PhaseKit error."""

    fatal = True

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "message": str(self), "fatal": self.fatal}


class ConfigurationError(PhaseKitError):
    """Raised when the engine configuration is invalid."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("Invalid configuration: " + "; ".join(self.issues))


class MissingMasterDocumentError(PhaseKitError):
    """The master document is absent; context assembly cannot continue."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Master document '{document_id}' not found in document store")


class StateCorruptionError(PhaseKitError):
    """The project state record is unreadable or fails schema validation."""

    def __init__(self, path: str, issues: List[str]):
        self.path = path
        self.issues = list(issues)
        super().__init__(f"Project state at {path} is corrupt: " + "; ".join(self.issues))


class PartialWriteError(PhaseKitError):
    """A session update failed mid-way; every write was rolled back."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Session update failed during {stage} and was rolled back: {cause}")


class TransitionNotAllowedError(PhaseKitError):
    """An explicit phase change was refused."""

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        self.reasons = list(reasons or [])
        super().__init__(message)


class DocumentStoreError(PhaseKitError):
    """Document store I/O failed after exhausting its retries."""


class DanglingIndexReferenceError(PhaseKitError):
    """A knowledge index entry points at a document that does not exist."""

    fatal = False

    def __init__(self, dimension: str, key: str, path: str):
        self.dimension = dimension
        self.key = key
        self.path = path
        super().__init__(f"Index entry ({dimension}, {key}) references missing document '{path}'")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"dimension": self.dimension, "key": self.key, "path": self.path})
        return data


class UnmatchedTaskWarning(PhaseKitError):
    """A completed-task description did not match any tracked task."""

    fatal = False

    def __init__(self, description: str):
        self.description = description
        super().__init__(f"No tracked task matches '{description}'")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["description"] = self.description
        return data
