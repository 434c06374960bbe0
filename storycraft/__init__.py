"""Trait-driven three-episode story generation."""
