"""
Repository pattern implementations for SQLite.

Repositories translate between domain models and database representations.
"""

from .images import ImageRepository

__all__ = ["ImageRepository"]
