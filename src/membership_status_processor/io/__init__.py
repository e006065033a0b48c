"""Membership data models and store backends."""
