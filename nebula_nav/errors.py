class NebulaError(Exception):
    """Base class for errors raised by the dashboard."""


class RemoteError(NebulaError):
    """A call to the remote blob host failed (network, auth, not found)."""


class SyncError(NebulaError):
    """A manual sync flow could not complete."""


class CredentialError(NebulaError):
    pass


class LinkNotFound(NebulaError):
    pass


class InvalidBackup(NebulaError):
    pass
