"""Scheduled maintenance jobs for the catalog."""
