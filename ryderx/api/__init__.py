"""Reservations API transport, auth session and catalog lookups."""
