from __future__ import annotations

import re
import unicodedata

_SYMBOLS = re.compile(r"[^a-z0-9\s-]")
_SPACES = re.compile(r"\s+")


def normalize_text(value: str) -> str:
    """Case- and diacritic-folded form of a title, used for duplicate detection.

    >>> normalize_text("  Apoio à Festa   de São João! ")
    'apoio a festa de sao joao'
    """

    s = unicodedata.normalize("NFD", value.strip().lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _SYMBOLS.sub("", s)
    return _SPACES.sub(" ", s).strip()
