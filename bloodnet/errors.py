"""Typed failures raised by the engine so callers can render specific messages."""


class BloodNetError(Exception):
    """Base class for every engine error"""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFoundError(BloodNetError):
    """A referenced id or email does not resolve"""


class ConflictError(BloodNetError):
    """A state-machine precondition was violated"""


class PermissionDeniedError(BloodNetError):
    """The actor is not allowed to perform the mutation"""


class ValidationError(BloodNetError):
    """Missing or malformed input"""


class StorageError(BloodNetError):
    """The underlying document store failed"""


class DuplicateKeyError(StorageError):
    """An insert collided with an existing key"""
