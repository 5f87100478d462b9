"""HTTP and WebSocket surface for the live world."""
