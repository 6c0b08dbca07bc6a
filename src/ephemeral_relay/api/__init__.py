"""HTTP and WebSocket API for the relay."""
