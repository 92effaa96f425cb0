"""
Object storage integration for relayed images.

Supports R2 (Cloudflare), MinIO and S3 (AWS) via the S3-compatible API.
Includes mock mode for local development without credentials.
"""
