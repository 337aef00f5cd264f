"""Fully connected TCP mesh between a fixed set of nodes, exchanging framed JSON messages."""

__version__ = "0.1.0"

__all__ = ["connection", "registration", "mesh"]