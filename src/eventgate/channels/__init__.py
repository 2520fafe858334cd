"""Concrete approval channel implementations."""
