"""Reservation draft, hold, payment countdown and refund estimate."""
