from __future__ import annotations

from pathlib import Path
from typing import Optional

from localtune.config import RuntimeConfig

# Sampling parameters every registered model gets.
FIXED_PARAMETERS: tuple[tuple[str, str], ...] = (
    ("temperature", "0.2"),
    ("top_p", "0.9"),
    ("repeat_penalty", "1.07"),
    ("repeat_last_n", "1024"),
)


def render_modelfile(source: str, cfg: RuntimeConfig) -> str:
    lines = [f"FROM {source}"]
    lines.extend(f"PARAMETER {key} {value}" for key, value in FIXED_PARAMETERS)
    lines.extend(
        [
            f"PARAMETER num_ctx {cfg.num_ctx:d}",
            f"PARAMETER num_predict {cfg.num_predict:d}",
            f"PARAMETER num_batch {cfg.num_batch:d}",
            f"PARAMETER num_thread {cfg.num_thread:d}",
        ]
    )
    return "\n".join(lines) + "\n"


def write_modelfile(path: Path, source: str, cfg: RuntimeConfig) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(render_modelfile(source, cfg), encoding="utf-8")
    tmp.replace(path)
    return path


def read_modelfile(path: Path) -> tuple[Optional[str], Optional[RuntimeConfig]]:
    """Parse a Modelfile written by `write_modelfile` back into (source, config)."""
    source: Optional[str] = None
    params: dict[str, str] = {}
    for raw in Path(path).read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line.startswith("FROM "):
            source = line[len("FROM "):].strip()
        elif line.startswith("PARAMETER "):
            parts = line.split(None, 2)
            if len(parts) == 3:
                params[parts[1]] = parts[2].strip()
    try:
        cfg = RuntimeConfig(
            num_ctx=int(params["num_ctx"]),
            num_predict=int(params["num_predict"]),
            num_batch=int(params["num_batch"]),
            num_thread=int(params["num_thread"]),
        )
    except (KeyError, ValueError):
        cfg = None
    return source, cfg
