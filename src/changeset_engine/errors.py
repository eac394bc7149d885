"""Exception hierarchy for the change-set engine.

Precondition failures (no active change-set, missing baseline) and policy or
validation failures are reported through result objects, never exceptions.
The classes here cover faults the engine cannot recover from locally and
lookups the API layer maps to HTTP errors.
"""


class ChangeSetEngineError(Exception):
    """Base error for the change-set engine.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize ChangeSetEngineError.

        Args:
            message: Error description.
        """
        super().__init__(message)
        self.message = message


class NotFoundError(ChangeSetEngineError):
    """Raised when a requested record does not exist in the state store."""


class StateStoreError(ChangeSetEngineError):
    """Raised when durable state cannot be written."""


class SnapshotRestoreError(ChangeSetEngineError):
    """Raised when restoring a snapshot onto the filesystem fails part way.

    Attributes:
        path: The file that could not be restored.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        """Initialize SnapshotRestoreError.

        Args:
            message: Error description.
            path: Optional absolute path of the file that failed.
        """
        super().__init__(message)
        self.path = path


class NotifierError(ChangeSetEngineError):
    """Raised by a notifier when the control plane call fails.

    Attributes:
        status_code: HTTP status code from the control plane (if available).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize NotifierError.

        Args:
            message: Error description.
            status_code: Optional HTTP status code.
        """
        super().__init__(message)
        self.status_code = status_code
