"""Saved-article migration package bootstrap."""

from .settings import PipelineConfig, Settings, get_settings, reset_settings_cache  # noqa: F401

__all__ = [
    "PipelineConfig",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
