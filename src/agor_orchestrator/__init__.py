"""Agor session orchestrator: task lifecycle, prompt queue and executor spawning."""

__version__ = "0.1.0"
