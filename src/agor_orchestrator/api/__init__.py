"""HTTP and WebSocket surface over the orchestrator."""
