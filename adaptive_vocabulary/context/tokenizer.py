# simple but extendable tokenizer

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, NamedTuple, Optional, Pattern

DEFAULT_KEEP = "'-"


class Token(NamedTuple):
    """A token as produced by a tokenizer collaborator."""
    surface: str
    pos: Optional[str] = None


@lru_cache(maxsize=16)
def _strip_pattern(keep: str) -> Pattern[str]:
    return re.compile(r"[^\w\s" + re.escape(keep) + "]")


def normalize_text(s: str, keep: str = DEFAULT_KEEP) -> str:
    """Collapse whitespace and drop symbols, except word chars and those in keep."""
    if not s:
        return ""
    s = " ".join(s.split())
    return _strip_pattern(keep).sub("", s)


def simple_tokenize(s: str, lowercase: bool = True) -> List[str]:
    """
    Return list of tokens (words). Splits on whitespace and drops pure punctuation.
    Simple, a morphological tokenizer can be wired in via the Tokenizer protocol.
    """
    if not s:
        return []
    out = []
    for t in s.split():
        # keep tokens with at least one alphanumeric char
        if any(ch.isalnum() for ch in t):
            out.append(t.lower() if lowercase else t)
    return out


class WhitespaceTokenizer:
    """Fallback tokenizer: whitespace split, no part-of-speech tags."""

    def __init__(self, lowercase: bool = True):
        self.lowercase = lowercase

    def tokenize(self, text: str) -> List[Token]:
        return [Token(t) for t in simple_tokenize(text, self.lowercase)]
