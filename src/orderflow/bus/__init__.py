"""Broker backends (in-memory, Redis Streams) and the wire codec."""
