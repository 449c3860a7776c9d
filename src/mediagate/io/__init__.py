"""IO - Caching and progress reporting."""
