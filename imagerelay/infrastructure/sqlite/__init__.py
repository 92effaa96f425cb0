"""
SQLite persistence for image metadata and access history.
"""
