"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- network: startup DNS resolution for the database host
- database: Postgres connection pool (SQLAlchemy)
- storage: Object storage (Google Cloud Storage)
- billing: Stripe credential resolution
"""
