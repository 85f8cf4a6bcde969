"""Local test node providers."""
