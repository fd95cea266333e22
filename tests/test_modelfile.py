import pytest

from localtune.config import RuntimeConfig
from localtune.modelfile import read_modelfile, render_modelfile, write_modelfile


def test_render_modelfile_sets_exact_parameters() -> None:
    cfg = RuntimeConfig(num_ctx=8192, num_predict=1536, num_batch=256, num_thread=16)
    assert render_modelfile("/models/a.gguf", cfg) == (
        "FROM /models/a.gguf\n"
        "PARAMETER temperature 0.2\n"
        "PARAMETER top_p 0.9\n"
        "PARAMETER repeat_penalty 1.07\n"
        "PARAMETER repeat_last_n 1024\n"
        "PARAMETER num_ctx 8192\n"
        "PARAMETER num_predict 1536\n"
        "PARAMETER num_batch 256\n"
        "PARAMETER num_thread 16\n"
    )


def test_write_modelfile_creates_parents_and_reads_back(tmp_path) -> None:
    cfg = RuntimeConfig(num_ctx=4096, num_predict=768, num_batch=128, num_thread=8)
    path = write_modelfile(tmp_path / "modelfiles" / "m.Modelfile", "/models/m.gguf", cfg)
    assert path.exists()
    assert not path.with_suffix(".Modelfile.tmp").exists()
    assert read_modelfile(path) == ("/models/m.gguf", cfg)


def test_read_modelfile_without_tuning_parameters(tmp_path) -> None:
    path = tmp_path / "bare.Modelfile"
    path.write_text("FROM x.gguf\nPARAMETER temperature 0.2\n", encoding="utf-8")
    assert read_modelfile(path) == ("x.gguf", None)


def test_runtime_config_rejects_non_positive_values() -> None:
    with pytest.raises(ValueError):
        RuntimeConfig(num_ctx=0, num_predict=1, num_batch=1, num_thread=1)
    with pytest.raises(ValueError):
        RuntimeConfig(num_ctx=2048, num_predict=1, num_batch=64.0, num_thread=1)
