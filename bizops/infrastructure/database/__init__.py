"""
Postgres persistence via SQLAlchemy.
"""
