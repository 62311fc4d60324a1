"""HTTP API and result persistence."""
