"""Environment-driven settings for the BizOps service."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
