"""
vaultbench: batched, deduplicating vault client for warehouse external functions.

Measures how many rows per second flow through a batching/fan-out pipeline
to a token vault, and provides the client that does the flowing.
"""

__version__ = "0.1.0"
