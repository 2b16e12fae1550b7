"""JSON-file persistence for orchestrator records."""
