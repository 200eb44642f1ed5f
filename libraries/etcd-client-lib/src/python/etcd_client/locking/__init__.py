# Locking subpackage

from .lock_handle import LockHandle
from .lock_manager import LockManager

__all__ = [
    "LockHandle",
    "LockManager",
]
