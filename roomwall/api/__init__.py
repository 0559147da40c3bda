"""HTTP/WebSocket control surface."""
