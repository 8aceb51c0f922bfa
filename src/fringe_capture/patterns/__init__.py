"""Fringe pattern generation."""
