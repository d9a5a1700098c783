"""Local git repository access and attribution engines."""
