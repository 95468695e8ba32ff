"""Feature modules: session handshake, messaging protocol, realtime endpoint."""
