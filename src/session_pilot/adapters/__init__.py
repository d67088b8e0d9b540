"""Adapters for trackers, the OpenCode server and prompt templates."""
