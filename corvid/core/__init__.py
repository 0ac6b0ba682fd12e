"""Core engine: providers, history, and tool scheduling."""
