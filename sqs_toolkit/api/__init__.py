"""HTTP status surface for a running consumer."""
