"""Configuration management with Pydantic models."""

from .settings import ActionDescription, EngineSettings, RetryPolicy

__all__ = ["EngineSettings", "ActionDescription", "RetryPolicy"]
