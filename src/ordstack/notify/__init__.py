"""Push notification backends."""
