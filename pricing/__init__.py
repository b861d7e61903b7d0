"""Pricing helpers: order totals and currency projection."""
