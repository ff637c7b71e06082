from __future__ import annotations


class SSHManagerError(Exception):
    """Base error for sshman."""


class RegistryError(SSHManagerError):
    """Registry operation could not be performed."""


class ServerExistsError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Server '{name}' already exists")
        self.name = name


class ServerNotFoundError(RegistryError):
    def __init__(self, name: str):
        super().__init__(f"Server '{name}' not found")
        self.name = name


class RegistryIOError(RegistryError):
    """Reading, writing or backing up the servers file failed."""


class InvalidNameError(SSHManagerError):
    def __init__(self, name: str, reason):
        super().__init__(reason.value)
        self.name = name
        self.reason = reason


class ProbeError(SSHManagerError):
    """Connection test could not succeed."""


class IncompleteRecordError(ProbeError):
    pass


class MissingCapabilityError(ProbeError):
    """Password auth requested but sshpass is not installed."""


class ConnectionFailedError(ProbeError):
    def __init__(self, message: str, exit_code: int | None = None, details: str | None = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.details = details
