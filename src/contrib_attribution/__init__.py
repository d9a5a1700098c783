"""Contribution attribution pipeline.

Computes per-contributor commit statistics and line-level code ownership from a
local git repository, the GitHub REST API, or both.
"""

__version__ = "1.0.0"
