from __future__ import annotations

import os
import shutil
import subprocess
from typing import Optional

from localtune.config import AcceleratorProfile
from localtune.logger import log

try:
    import torch
except ImportError:  # pragma: no cover
    torch = None

_DEFAULT_THREADS = 12


def memory_gib(memory_mib: int) -> int:
    """MiB to GiB, rounded to the nearest GiB."""
    return (memory_mib + 512) // 1024


def cpu_threads(override: Optional[int] = None) -> int:
    if override is not None and int(override) > 0:
        return int(override)
    env = os.getenv("LOCALTUNE_NUM_THREAD", "").strip()
    if env.isdigit() and int(env) > 0:
        return int(env)
    return os.cpu_count() or _DEFAULT_THREADS


def _pick_largest(devices: list[tuple[str, int]]) -> AcceleratorProfile:
    if not devices:
        return AcceleratorProfile()
    name, mib = max(devices, key=lambda d: d[1])
    return AcceleratorProfile(device_name=name, memory_mib=mib)


def _torch_devices() -> list[tuple[str, int]]:
    if torch is None or not torch.cuda.is_available():
        return []
    devices: list[tuple[str, int]] = []
    for idx in range(torch.cuda.device_count()):
        props = torch.cuda.get_device_properties(idx)
        devices.append((props.name, int(props.total_memory) // (1024 * 1024)))
    return devices


def _parse_nvidia_smi(output: str) -> list[tuple[str, int]]:
    devices: list[tuple[str, int]] = []
    for line in output.splitlines():
        if "," not in line:
            continue
        name, _, mem = line.rpartition(",")
        name, mem = name.strip(), mem.strip()
        if not mem.isdigit():
            continue
        devices.append((name or "NVIDIA GPU", int(mem)))
    return devices


def _nvidia_smi_devices() -> list[tuple[str, int]]:
    nvidia_smi = shutil.which("nvidia-smi")
    if not nvidia_smi:
        return []
    try:
        proc = subprocess.run(
            [
                nvidia_smi,
                "--query-gpu=name,memory.total",
                "--format=csv,noheader,nounits",
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.warning("nvidia-smi query failed: %s", exc)
        return []
    if proc.returncode != 0:
        log.warning("nvidia-smi exited with code %s", proc.returncode)
        return []
    return _parse_nvidia_smi(proc.stdout or "")


def detect_accelerator() -> AcceleratorProfile:
    """
    Profile the accelerator with the most memory.

    Uses torch's CUDA device properties when available and falls back to
    nvidia-smi for environments without a CUDA torch wheel. Returns an empty
    profile when neither reports a device.
    """
    try:
        devices = _torch_devices()
    except RuntimeError as exc:
        log.warning("torch CUDA query failed: %s", exc)
        devices = []
    if not devices:
        devices = _nvidia_smi_devices()
    profile = _pick_largest(devices)
    if profile.known:
        log.info(
            "GPU detected: %s (%s MiB ~ %s GB)",
            profile.device_name,
            profile.memory_mib,
            memory_gib(profile.memory_mib),
        )
    else:
        log.warning("Could not detect GPU VRAM; using conservative defaults.")
    return profile
