"""Trading bots."""
