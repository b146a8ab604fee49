class SaveError(Exception):
    """Base exception for save/load errors."""


class InvalidArgumentError(SaveError, ValueError):
    """Raised for caller bugs such as an empty key or a missing record. Never retried."""


class IOFailureError(SaveError):
    """Raised when the filesystem refuses an operation (permissions, disk full, missing dir)."""


class CorruptionError(SaveError):
    """Raised when a stored payload cannot be decrypted or decoded.

    A wrong passphrase and a damaged file both end up here.
    """


class DuplicateRegistrationError(SaveError):
    """Raised when a second record with an already registered key is registered."""


class OrchestratorStateError(SaveError):
    """Raised when an operation is not allowed in the orchestrator's current state."""


class ConfigError(SaveError):
    """Raised when configuration values are invalid."""
