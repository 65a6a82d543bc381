"""
Source entity catalog and business rules.
"""

from .catalog import ENTITIES, ENTITY_ORDER, ColumnSpec, EntitySpec, dimension_entities, get_entity
from .rules import apply_business_rules

__all__ = [
    "ENTITIES",
    "ENTITY_ORDER",
    "ColumnSpec",
    "EntitySpec",
    "dimension_entities",
    "get_entity",
    "apply_business_rules"
]
