"""Voice provider transports."""
