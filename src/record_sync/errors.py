"""Exception hierarchy for the sync engine.

- ``SyncError``: base class for everything raised by this package.
- ``SyncConnectionError``: the remote store is unreachable, closed, or
  rejected the credentials.  Aborts a sync cycle.
- ``RemoteTimeoutError``: a remote call exceeded its configured timeout.
- ``SyncConfigError``: sync was invoked while disabled or misconfigured.
"""


class SyncError(Exception):
    """Base class for sync errors."""


class SyncConnectionError(SyncError):
    """The remote document store could not be reached."""


class RemoteTimeoutError(SyncConnectionError):
    """A remote operation did not finish within its timeout."""


class SyncConfigError(SyncError, ValueError):
    """Sync configuration is missing, disabled, or invalid."""
