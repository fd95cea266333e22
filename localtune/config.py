from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    num_ctx: int
    num_predict: int
    num_batch: int
    num_thread: int

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"RuntimeConfig.{f.name} must be a positive integer, got {value!r}")


@dataclass(frozen=True, slots=True)
class AcceleratorProfile:
    device_name: Optional[str] = None
    memory_mib: Optional[int] = None

    @property
    def known(self) -> bool:
        return self.memory_mib is not None


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    source_path: str
    size_b: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class TierCaps:
    ctx_cap: int
    batch_cap: int


class TuneOutcome(str, Enum):
    TUNED = "tuned"
    TUNED_WITHOUT_HEADROOM = "tuned_without_headroom"
    EXHAUSTED_FAILURE = "exhausted_failure"


class TuneResult(NamedTuple):
    config: RuntimeConfig
    outcome: TuneOutcome


@dataclass(slots=True)
class TuningSession:
    alias: str
    modelfile: str
    source_path: str
    config: RuntimeConfig
    attempt: int = 0
    improved: bool = False
