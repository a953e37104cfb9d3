"""Batching article dispatcher that pings Discord roles around delivery."""
__version__ = "0.1.0"
