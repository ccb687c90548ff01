"""Dealership task workflow and proof verification service."""
