"""Command-line interface for flowsched (``flowsched ...``)."""
