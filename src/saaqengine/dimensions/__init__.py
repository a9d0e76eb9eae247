"""Dimensional encoding of categorical fields."""

from saaqengine.dimensions.registry import DIMENSIONS, Dimension, DimensionSpec, dimensions_for, get_spec
from saaqengine.dimensions.schema import DimensionSchema, DimensionWriter

__all__ = [
    "DIMENSIONS",
    "Dimension",
    "DimensionSpec",
    "DimensionSchema",
    "DimensionWriter",
    "dimensions_for",
    "get_spec",
]
