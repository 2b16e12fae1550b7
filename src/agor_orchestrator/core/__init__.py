"""Orchestration core: state machines, queue coordination, stop protocol, recovery."""
