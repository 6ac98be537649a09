"""Outer adapters hosting the replay engine."""

from .http_surface import HttpActionSurface
from .runtime import EngineRuntime

__all__ = ["EngineRuntime", "HttpActionSurface"]
