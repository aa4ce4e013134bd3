"""Database package for typecore.

This package provides the storage layer with dependency injection support.
Only TypingDatabase is exported as the public API.
"""

from .database import TypingDatabase

__all__ = ["TypingDatabase"]
