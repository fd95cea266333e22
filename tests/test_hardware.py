import types

import localtune.hardware as hw
from localtune.config import AcceleratorProfile


def _fake_smi(monkeypatch, stdout: str, returncode: int = 0) -> None:
    monkeypatch.setattr(hw, "torch", None)
    monkeypatch.setattr(hw.shutil, "which", lambda _: "nvidia-smi")

    def _fake_run(*args, **kwargs):
        return types.SimpleNamespace(returncode=returncode, stdout=stdout, stderr="")

    monkeypatch.setattr(hw.subprocess, "run", _fake_run)


def test_detect_accelerator_picks_largest_nvidia_smi_device(monkeypatch) -> None:
    _fake_smi(monkeypatch, "NVIDIA GeForce RTX 3060, 12288\nNVIDIA GeForce RTX 4090, 24564\n")
    profile = hw.detect_accelerator()
    assert profile == AcceleratorProfile(device_name="NVIDIA GeForce RTX 4090", memory_mib=24564)
    assert hw.memory_gib(profile.memory_mib) == 24


def test_detect_accelerator_skips_malformed_lines(monkeypatch) -> None:
    _fake_smi(monkeypatch, "garbage\nNVIDIA A2000, [N/A]\nNVIDIA A4000, 16376\n")
    assert hw.detect_accelerator().memory_mib == 16376


def test_detect_accelerator_unknown_when_nvidia_smi_fails(monkeypatch) -> None:
    _fake_smi(monkeypatch, "", returncode=9)
    profile = hw.detect_accelerator()
    assert profile.known is False
    assert profile.device_name is None


def test_detect_accelerator_unknown_without_tools(monkeypatch) -> None:
    monkeypatch.setattr(hw, "torch", None)
    monkeypatch.setattr(hw.shutil, "which", lambda _: None)
    assert hw.detect_accelerator() == AcceleratorProfile()


def test_detect_accelerator_prefers_torch_devices(monkeypatch) -> None:
    props = [
        types.SimpleNamespace(name="GPU small", total_memory=8 * 1024 ** 3),
        types.SimpleNamespace(name="GPU big", total_memory=24 * 1024 ** 3),
    ]
    fake_cuda = types.SimpleNamespace(
        is_available=lambda: True,
        device_count=lambda: len(props),
        get_device_properties=lambda idx: props[idx],
    )
    monkeypatch.setattr(hw, "torch", types.SimpleNamespace(cuda=fake_cuda))
    monkeypatch.setattr(hw.shutil, "which", lambda _: None)
    assert hw.detect_accelerator() == AcceleratorProfile(device_name="GPU big", memory_mib=24576)
