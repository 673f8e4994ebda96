"""Exceptions for treesync."""


class TreeSyncError(Exception):
    """Base class for every error raised by treesync."""


class ConfigError(TreeSyncError):
    """Raised for an invalid configuration value or unreadable config file."""


class StateError(TreeSyncError):
    """Raised when the persisted state file cannot be parsed."""


class RemoteError(TreeSyncError):
    """A terminal failure reported by a remote store.

    Remote stores retry transient faults themselves; by the time one of
    these reaches the engine the request has failed for good.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteNotFoundError(RemoteError):
    """The requested path, ref or object does not exist on the remote."""


class RemoteEmptyError(RemoteNotFoundError):
    """The repository exists but has no commits yet."""


class RemoteAuthError(RemoteError):
    """The remote rejected the credentials."""


class RemotePermissionError(RemoteError):
    """The credentials are valid but lack the required permission."""


class RemoteRateLimitError(RemoteError):
    """Rate limit still exceeded after all retries."""


class RemoteConflictError(RemoteError):
    """An optimistic-concurrency check failed.

    Raised when an expected object id or branch tip no longer matches the
    remote.  Never retried: re-plan from a fresh snapshot instead.
    """


class PreflightError(TreeSyncError):
    """The repository check failed; the run was aborted before any change."""


class SyncInProgressError(TreeSyncError):
    """Another sync already holds the run lock for this state directory."""


class SyncFailedError(TreeSyncError):
    """One or more operations failed during execution.

    Individual failures are in the sync log; only the count is carried.
    """

    def __init__(self, failures: int):
        super().__init__(f"Sync failed with {failures} errors.")
        self.failures = failures
