"""Bicycle rental booking service."""
