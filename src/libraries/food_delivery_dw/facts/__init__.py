"""
Fact table assembly.
"""

from .fact_assembler import FactAssembler

__all__ = [
    "FactAssembler"
]
