"""Core constants shared across the pipeline."""
