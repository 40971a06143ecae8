"""HTTP helpers shared by the worker and its CLI."""
