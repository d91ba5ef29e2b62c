"""
BizOps - backend for a small business-operations dashboard.

This package contains the backend core:
- core: Framework-agnostic domain rules (object paths, access control)
- infrastructure: External service integrations (GCS, Postgres, Stripe, DNS)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
