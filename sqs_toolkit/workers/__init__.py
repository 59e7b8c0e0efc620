"""Long-running worker entry points."""
