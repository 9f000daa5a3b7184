"""State handlers for the listing conversation."""
