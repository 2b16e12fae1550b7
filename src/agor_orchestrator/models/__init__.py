"""Pydantic models for sessions, tasks, queued messages and bus events."""
