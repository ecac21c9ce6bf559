"""Core engine for probe-budget."""
