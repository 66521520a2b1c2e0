"""agentsync - keep declarative agent-project sources in sync with the canonical graph."""

__version__ = "0.4.0"
