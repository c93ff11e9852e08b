"""Entity resolution and consolidation for multi-source private-markets data."""
