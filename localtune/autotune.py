from __future__ import annotations

import math
from dataclasses import replace
from pathlib import Path
from typing import Optional, Protocol

from localtune.config import (
    AcceleratorProfile,
    ModelDescriptor,
    RuntimeConfig,
    TierCaps,
    TuneOutcome,
    TuneResult,
    TuningSession,
)
from localtune.defaults import choose_defaults, headroom_caps
from localtune.logger import log
from localtune.model_size import default_alias
from localtune.modelfile import write_modelfile

# ---------------------------------------------------------------------------
# Ladders and step sizes
# ---------------------------------------------------------------------------
CTX_LADDER: tuple[int, ...] = (12288, 8192, 6144, 4096, 3072, 2048)
BATCH_LADDER: tuple[int, ...] = (192, 160, 128, 96, 64)
CTX_STEP = 1024
BATCH_STEP = 32
MAX_ATTEMPTS = 6
PROBE_TIMEOUT_S = 60.0


class RuntimeBackend(Protocol):
    def apply(self, alias: str, modelfile: Path) -> bool: ...

    def probe(self, alias: str, timeout_s: float = PROBE_TIMEOUT_S) -> bool: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _next_rung(value: int, ladder: tuple[int, ...]) -> Optional[int]:
    for rung in ladder:
        if value > rung:
            return rung
    return None


def shrink_step(cfg: RuntimeConfig) -> Optional[RuntimeConfig]:
    """
    One step down the ladder, or None when nothing is left to shrink.

    Context is reduced first; batch size only moves once context is at or
    below the last context rung.
    """
    ctx = _next_rung(cfg.num_ctx, CTX_LADDER)
    if ctx is not None:
        return replace(cfg, num_ctx=ctx)
    batch = _next_rung(cfg.num_batch, BATCH_LADDER)
    if batch is not None:
        return replace(cfg, num_batch=batch)
    return None


def max_passes(caps: TierCaps) -> int:
    return math.ceil(caps.ctx_cap / CTX_STEP) + math.ceil(caps.batch_cap / BATCH_STEP)


def _fmt(cfg: RuntimeConfig) -> str:
    return f"ctx={cfg.num_ctx} batch={cfg.num_batch} pred={cfg.num_predict} thr={cfg.num_thread}"


class _SessionRunner:
    def __init__(self, backend: RuntimeBackend, probe_timeout_s: float = PROBE_TIMEOUT_S) -> None:
        self.backend = backend
        self.probe_timeout_s = probe_timeout_s

    def reload_with(self, session: TuningSession, cfg: RuntimeConfig) -> bool:
        # The session only adopts `cfg` once it is on disk, so the Modelfile
        # and session.config agree at every reload.
        try:
            write_modelfile(Path(session.modelfile), session.source_path, cfg)
        except OSError as exc:
            log.error("Could not write %s: %s", session.modelfile, exc)
            return False
        session.config = cfg
        self.backend.apply(session.alias, Path(session.modelfile))
        return True

    def probe(self, session: TuningSession) -> bool:
        return self.backend.probe(session.alias, self.probe_timeout_s)


# ---------------------------------------------------------------------------
# Downward tuning (memory-pressure recovery)
# ---------------------------------------------------------------------------

class DownwardTuner(_SessionRunner):
    def __init__(
        self,
        backend: RuntimeBackend,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        super().__init__(backend, probe_timeout_s)
        self.max_attempts = max(1, max_attempts)

    def run(self, session: TuningSession) -> bool:
        """Probe, shrinking after each failure. True once a probe succeeds."""
        while session.attempt < self.max_attempts:
            session.attempt += 1
            log.info("Load probe (attempt %d): %s", session.attempt, _fmt(session.config))
            if self.probe(session):
                log.info("Probe succeeded.")
                return True

            log.warning("Probe indicates memory pressure. Auto-tuning...")
            if session.attempt >= self.max_attempts:
                break
            smaller = shrink_step(session.config)
            if smaller is None:
                log.error(
                    "Still OOM after aggressive tuning (ctx=%d, batch=%d). Consider a lighter quant.",
                    session.config.num_ctx,
                    session.config.num_batch,
                )
                return False
            log.info("Re-creating '%s' with tuned params: %s", session.alias, _fmt(smaller))
            self.reload_with(session, smaller)

        log.error(
            "Auto-tuning exhausted %d attempts at ctx=%d batch=%d. Consider a lighter quant.",
            self.max_attempts,
            session.config.num_ctx,
            session.config.num_batch,
        )
        return False


# ---------------------------------------------------------------------------
# Upward tuning (headroom hill-climb)
# ---------------------------------------------------------------------------

class UpwardTuner(_SessionRunner):
    def __init__(
        self,
        backend: RuntimeBackend,
        caps: TierCaps,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
    ) -> None:
        super().__init__(backend, probe_timeout_s)
        self.caps = caps
        self.passes = 0
        self.stalled = False

    def _try(self, session: TuningSession, candidate: RuntimeConfig, label: str, value: int) -> bool:
        previous = session.config
        log.info("-> Trying %s=%d", label, value)
        if not self.reload_with(session, candidate):
            return False
        if self.probe(session):
            return True
        log.info("x %s=%d failed; reverting to %d", label, value, getattr(previous, label))
        if self.reload_with(session, previous) or self.reload_with(session, previous):
            return False
        # The rejected candidate stays on disk until the final reload in run().
        log.error("Could not restore %s; stopping headroom search at %s", session.modelfile, _fmt(previous))
        session.config = previous
        self.stalled = True
        return False

    def run(self, session: TuningSession) -> bool:
        """Grow batch then context until a full pass accepts nothing. True if anything grew."""
        caps = self.caps
        limit = max_passes(caps)
        any_improved = False
        changed = True
        self.passes = 0
        self.stalled = False
        while changed and not self.stalled and self.passes < limit:
            changed = False
            cfg = session.config
            if cfg.num_batch >= caps.batch_cap and cfg.num_ctx >= caps.ctx_cap:
                break
            self.passes += 1
            log.info(
                "Headroom pass %d: current ctx=%d batch=%d (caps ctx<=%d, batch<=%d)",
                self.passes, cfg.num_ctx, cfg.num_batch, caps.ctx_cap, caps.batch_cap,
            )

            if cfg.num_batch < caps.batch_cap:
                try_batch = min(cfg.num_batch + BATCH_STEP, caps.batch_cap)
                if self._try(session, replace(cfg, num_batch=try_batch), "num_batch", try_batch):
                    changed = any_improved = True
                    log.info("^ Increased num_batch -> %d", try_batch)

            cfg = session.config
            if cfg.num_ctx < caps.ctx_cap and not self.stalled:
                try_ctx = min(cfg.num_ctx + CTX_STEP, caps.ctx_cap)
                if self._try(session, replace(cfg, num_ctx=try_ctx), "num_ctx", try_ctx):
                    changed = any_improved = True
                    log.info("^ Increased num_ctx -> %d", try_ctx)

        if any_improved:
            session.improved = True
            log.info("Final tuned settings: %s", _fmt(session.config))
        else:
            log.info("No safe headroom found.")
        if any_improved or self.stalled:
            self.reload_with(session, session.config)
        return any_improved


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

class Tuner:
    """
    End-to-end tuning for one model registration at a time.

    Each `tune` call owns a fresh TuningSession; nothing carries over between
    calls, so one Tuner can register several models in sequence. Running two
    sessions against the same GPU at once is not supported: probe results
    would reflect the other session's memory use.
    """

    def __init__(
        self,
        backend: RuntimeBackend,
        workdir: Path,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
        max_attempts: int = MAX_ATTEMPTS,
        num_thread: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.workdir = Path(workdir)
        self.probe_timeout_s = probe_timeout_s
        self.max_attempts = max_attempts
        self.num_thread = num_thread

    def modelfile_path(self, alias: str) -> Path:
        return self.workdir / "modelfiles" / f"{alias}.Modelfile"

    def tune(
        self,
        model: ModelDescriptor,
        accelerator: AcceleratorProfile,
        alias: Optional[str] = None,
    ) -> TuneResult:
        alias = alias or default_alias(model.source_path)
        initial = choose_defaults(accelerator.memory_mib, model.size_b, self.num_thread)
        session = TuningSession(
            alias=alias,
            modelfile=str(self.modelfile_path(alias)),
            source_path=model.source_path,
            config=initial,
        )
        if model.size_b is None:
            log.warning("Model size not found in file name; using the smallest size tier.")
        log.info(
            "Defaults: num_ctx=%d num_predict=%d num_batch=%d num_thread=%d",
            initial.num_ctx, initial.num_predict, initial.num_batch, initial.num_thread,
        )

        log.info("Registering model '%s' -> %s", alias, model.source_path)
        runner = _SessionRunner(self.backend, self.probe_timeout_s)
        runner.reload_with(session, initial)

        log.info("Auto OOM probe + tuning...")
        down = DownwardTuner(self.backend, self.probe_timeout_s, self.max_attempts)
        if not down.run(session):
            return TuneResult(session.config, TuneOutcome.EXHAUSTED_FAILURE)

        log.info("Auto headroom autotune...")
        up = UpwardTuner(self.backend, headroom_caps(accelerator.memory_mib), self.probe_timeout_s)
        if up.run(session):
            return TuneResult(session.config, TuneOutcome.TUNED)
        return TuneResult(session.config, TuneOutcome.TUNED_WITHOUT_HEADROOM)
