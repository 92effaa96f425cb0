"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- sqlite: Metadata persistence (image records, access logs)
- storage: Object storage (S3-compatible)

These wrappers translate between external formats and our domain models,
and turn driver errors into the core error taxonomy.
"""
