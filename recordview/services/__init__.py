"""Record presentation services."""
