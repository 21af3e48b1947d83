"""
BloodNet - blood request and surplus offer coordination engine
Connects requesters (individuals, hospitals, blood banks) with responders
"""

from bloodnet.errors import (
    BloodNetError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)

__version__ = '1.0.0'

__all__ = [
    'BloodNetError',
    'ConflictError',
    'NotFoundError',
    'PermissionDeniedError',
    'StorageError',
    'ValidationError',
]
