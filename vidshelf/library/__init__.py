"""Library storage, discovery and path safety."""
