"""Stateless risk and position sizing calculators."""
