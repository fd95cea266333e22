from __future__ import annotations

from decimal import Decimal
from typing import Optional

from localtune.config import RuntimeConfig, TierCaps
from localtune.hardware import cpu_threads, memory_gib
from localtune.model_size import size_tier

# (min GiB, [(max size tier or None, (num_ctx, num_predict, num_batch)), ...])
# Rows are checked top-down; within a row the first size bound that holds wins.
_DEFAULTS_TABLE: tuple[tuple[int, tuple[tuple[Optional[int], tuple[int, int, int]], ...]], ...] = (
    (22, (
        (80, (8192, 1536, 256)),
        (140, (8192, 1536, 192)),
        (320, (8192, 1024, 128)),
        (None, (6144, 768, 96)),
    )),
    (16, (
        (80, (8192, 1280, 192)),
        (140, (8192, 1280, 160)),
        (None, (6144, 768, 96)),
    )),
    (12, (
        (80, (6144, 1024, 160)),
        (None, (4096, 768, 128)),
    )),
    (8, (
        (80, (4096, 768, 128)),
        (None, (3072, 512, 96)),
    )),
)

CONSERVATIVE_DEFAULTS: tuple[int, int, int] = (3072, 512, 64)

_CAPS_TABLE: tuple[tuple[int, TierCaps], ...] = (
    (22, TierCaps(ctx_cap=16384, batch_cap=320)),
    (16, TierCaps(ctx_cap=12288, batch_cap=256)),
    (12, TierCaps(ctx_cap=8192, batch_cap=192)),
)
_LOW_TIER_CAPS = TierCaps(ctx_cap=6144, batch_cap=160)
UNKNOWN_MEMORY_CAPS = TierCaps(ctx_cap=12288, batch_cap=256)


def _lookup(memory_mib: Optional[int], size_b: Optional[Decimal]) -> tuple[int, int, int]:
    if memory_mib is None:
        return CONSERVATIVE_DEFAULTS
    gib = memory_gib(memory_mib)
    tier = size_tier(size_b)
    for min_gib, row in _DEFAULTS_TABLE:
        if gib < min_gib:
            continue
        for max_tier, values in row:
            if max_tier is None or tier <= max_tier:
                return values
    return CONSERVATIVE_DEFAULTS


def choose_defaults(
    memory_mib: Optional[int],
    size_b: Optional[Decimal],
    threads: Optional[int] = None,
) -> RuntimeConfig:
    """Initial config for an accelerator memory size and a model size."""
    ctx, pred, batch = _lookup(memory_mib, size_b)
    return RuntimeConfig(num_ctx=ctx, num_predict=pred, num_batch=batch, num_thread=cpu_threads(threads))


def headroom_caps(memory_mib: Optional[int]) -> TierCaps:
    if memory_mib is None:
        return UNKNOWN_MEMORY_CAPS
    gib = memory_gib(memory_mib)
    for min_gib, caps in _CAPS_TABLE:
        if gib >= min_gib:
            return caps
    return _LOW_TIER_CAPS
