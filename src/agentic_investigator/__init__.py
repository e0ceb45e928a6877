"""Coordination layer for agent-driven investigations."""

__version__ = "0.1.0"
