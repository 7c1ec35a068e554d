"""Shared backends — generative text and image services, rate limiting, HTML helpers."""
