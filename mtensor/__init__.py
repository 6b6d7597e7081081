"""Strided float32 tensors with gradients, broadcasting arithmetic, comparisons,
convolutions and gradient-graph export."""

__version__ = "2.0.0"

__all__ = ["__version__"]