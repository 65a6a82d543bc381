"""
Stage to clean layer transformation.
"""

from .validation import ValidationTransformer, ValidationOutcome
from .clean_loader import CleanLoader
from .dead_letter import DeadLetterSink

__all__ = [
    "ValidationTransformer",
    "ValidationOutcome",
    "CleanLoader",
    "DeadLetterSink"
]
