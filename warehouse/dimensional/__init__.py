"""
Dimensional Model Module
"""
from .assembly import DimensionalAssembler
from .keys import SurrogateKeyRegistry, assign_surrogate_keys
from .schema import STAR_SCHEMA, UNRESOLVED_KEY, EntityFamily

__all__ = [
    "DimensionalAssembler",
    "SurrogateKeyRegistry",
    "assign_surrogate_keys",
    "STAR_SCHEMA",
    "UNRESOLVED_KEY",
    "EntityFamily",
]
