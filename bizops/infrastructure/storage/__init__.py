"""
Object storage integration for uploaded files.

Backed by Google Cloud Storage with signed upload/download URLs.
Includes mock mode for local development without credentials.
"""
