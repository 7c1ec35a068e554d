"""External service clients: web search, stock images, asset storage."""
