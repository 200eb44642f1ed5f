# Election subpackage

from .election_manager import ElectionManager

__all__ = [
    "ElectionManager",
]
