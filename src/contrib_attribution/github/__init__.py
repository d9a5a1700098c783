"""GitHub REST API access: client, quota guard, request queue and fetchers."""
