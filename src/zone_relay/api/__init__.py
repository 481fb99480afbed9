"""HTTP and WebSocket API for Zone Relay."""
