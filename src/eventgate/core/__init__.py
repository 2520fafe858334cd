"""Core runtime helpers shared by every eventgate component."""
