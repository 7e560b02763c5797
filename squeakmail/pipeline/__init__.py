"""Fetch coordination and the command line interface."""
