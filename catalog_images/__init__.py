"""Catalog image pipeline: crop geometry, auto-trim, derivative rendering and versioned publishing."""
