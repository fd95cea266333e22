import json

import pytest

from localtune.settings import LocalTuneSettings, SettingsStore, coerce_setting


def test_settings_load_recovers_from_corrupt_json(tmp_path) -> None:
    store = SettingsStore(home=tmp_path)
    store.path.write_text("{bad", encoding="utf-8")
    loaded = store.load()
    assert isinstance(loaded, LocalTuneSettings)
    assert loaded.port == 11434
    assert store.path.exists()
    assert store.path.with_suffix(".json.corrupt").read_text(encoding="utf-8") == "{bad"


def test_settings_round_trip_ignores_unknown_keys(tmp_path) -> None:
    store = SettingsStore(home=tmp_path)
    store.save(LocalTuneSettings(port=11500, num_thread=8))
    assert store.load() == LocalTuneSettings(port=11500, num_thread=8)

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    raw["ktransformers_path"] = "/opt/kt"
    store.path.write_text(json.dumps(raw), encoding="utf-8")
    assert store.load().port == 11500


def test_coerce_setting() -> None:
    assert coerce_setting("port", "8080") == 8080
    assert coerce_setting("probe_timeout_s", "30") == 30.0
    assert coerce_setting("num_thread", "none") is None
    with pytest.raises(KeyError):
        coerce_setting("gpu_layers", "10")
    with pytest.raises(ValueError):
        coerce_setting("max_attempts", "0")
    with pytest.raises(ValueError):
        coerce_setting("host", "")


def test_settings_load_coerces_stored_values(tmp_path) -> None:
    store = SettingsStore(home=tmp_path)
    store.path.write_text(
        json.dumps({"port": "11500", "probe_timeout_s": 30, "num_thread": -2, "max_attempts": "many", "host": None}),
        encoding="utf-8",
    )
    loaded = store.load()
    assert loaded.port == 11500
    assert loaded.probe_timeout_s == 30.0
    assert loaded.num_thread is None
    assert loaded.max_attempts == 6
    assert loaded.host == "127.0.0.1"
