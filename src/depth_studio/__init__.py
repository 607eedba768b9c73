"""Depth Studio: monocular depth estimation with model lifecycle management,
progress tracking and depth visualization."""

__version__ = "0.1.0"
