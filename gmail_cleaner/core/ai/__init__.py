"""
AI classification of mirrored messages.
"""
from .classifier import (
    ClassificationEngine,
    ClassificationRunResult,
    MalformedClassification,
    ReplyParseError,
    ValidClassification,
    parse_classification_reply,
    strip_code_fences,
)

__all__ = [
    'ClassificationEngine',
    'ClassificationRunResult',
    'MalformedClassification',
    'ReplyParseError',
    'ValidClassification',
    'parse_classification_reply',
    'strip_code_fences',
]
