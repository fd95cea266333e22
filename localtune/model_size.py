from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from localtune.config import ModelDescriptor

# A number directly followed by b/B, e.g. "8b", "7.5B", "70B".
_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)[bB]")


def estimate_size_b(path: str) -> Optional[Decimal]:
    """Parameter count in billions as spelled in the file name, or None."""
    match = _SIZE_RE.search(Path(path).name)
    if not match:
        return None
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return None


def size_tier(size_b: Optional[Decimal]) -> int:
    """
    Bucket key for the defaults table.

    The digits of the size are read with the decimal point dropped, so
    "7.5" gives 75 and "13" gives 13. It is a magnitude heuristic, not a
    parameter count. Unknown sizes map to 0.
    """
    if size_b is None:
        return 0
    digits = str(size_b).replace(".", "")
    return int(digits) if digits.isdigit() else 0


def describe_model(path: str) -> ModelDescriptor:
    return ModelDescriptor(source_path=str(path), size_b=estimate_size_b(path))


def default_alias(path: str) -> str:
    stem = Path(path).stem
    return stem.replace(" ", "-") or "model"
