"""postforge — durable job queue and content pipeline for blog publishing."""

__version__ = "0.1.0"
