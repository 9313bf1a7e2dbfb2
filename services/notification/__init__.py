"""Notification worker for booking events."""
