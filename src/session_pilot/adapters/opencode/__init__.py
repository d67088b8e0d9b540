"""OpenCode server adapter."""

from session_pilot.adapters.opencode.client import OpenCodeClient

__all__ = ["OpenCodeClient"]
