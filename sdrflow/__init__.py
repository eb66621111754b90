"""Asynchronous block-based flowgraph runtime with stream buffers, message ports, schedulers and an HTTP control port."""

__version__ = "0.1.0"