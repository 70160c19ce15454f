"""Custom exceptions for the framework reconciliation engine."""


class ReconcileError(Exception):
    """Base exception for all reconciliation errors."""


class SelectionError(ReconcileError):
    """Raised when the package selection filter is invalid or contradictory.

    Reported before any processing begins; the run exits without side effects.
    """


class ConfigurationError(ReconcileError):
    """Raised when connection settings are missing, malformed, or unusable."""


class RetrievalError(ReconcileError):
    """Raised when a package archive cannot be downloaded or opened."""

    def __init__(self, package_id: str, version: str, reason: str):
        self.package_id = package_id
        self.version = version
        self.reason = reason
        super().__init__(f"failed to retrieve {package_id}@{version}: {reason}")


class ApplicationError(ReconcileError):
    """Raised when a single framework operation cannot be applied to the store.

    Captured on the operation; the remaining operations of the package still run.
    """

    def __init__(self, kind: str, framework: str, reason: str):
        self.kind = kind
        self.framework = framework
        self.reason = reason
        super().__init__(f"{kind} {framework} failed: {reason}")


class CheckpointError(ReconcileError):
    """Raised when a checkpoint cannot be read or written."""
