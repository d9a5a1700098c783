"""HTTP API for the attribution pipeline."""
