"""autoscan - scheduled market screening with risk-gated order execution."""

__version__ = "0.1.0"
