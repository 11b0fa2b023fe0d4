"""Spatial conservation prioritization: build, solve and compare reserve selections."""

__version__ = "0.1.0"
