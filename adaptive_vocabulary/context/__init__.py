"""
adaptive_vocabulary.context

Text-side helpers shared by the core models:
 - tokenization (pluggable Tokenizer, whitespace fallback) and symbol stripping
 - token statistics and the data-only context label fallback
"""

from .tokenizer import Token, WhitespaceTokenizer, normalize_text, simple_tokenize
from .scorers import TokenStatistics, token_statistics, derive_context_label

__all__ = [
    "Token",
    "WhitespaceTokenizer",
    "simple_tokenize",
    "normalize_text",
    "TokenStatistics",
    "token_statistics",
    "derive_context_label",
]
