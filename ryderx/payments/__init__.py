"""Hosted checkout redirect."""
