"""Mode dispatch and contributor aggregation."""
