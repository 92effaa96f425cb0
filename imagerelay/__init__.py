"""
ImageRelay - relays uploaded images to an object store behind opaque tokens.

This package contains the complete application:
- core: Framework-agnostic orchestration, token codec, maintenance jobs
- infrastructure: SQLite metadata store and object storage adapters
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
