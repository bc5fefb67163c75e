"""nodeflow: workflow graph execution engine."""

__version__ = "1.0.0"
