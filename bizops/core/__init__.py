"""
Core domain rules for the business-operations backend.

Nothing here imports FastAPI, GCS or any other infrastructure; object
paths and access rules are plain functions over pydantic models and
dataclasses.
"""
