from decimal import Decimal

from localtune.model_size import default_alias, describe_model, estimate_size_b, size_tier


def test_estimate_size_from_file_name() -> None:
    assert estimate_size_b("Meta-Llama-3.1-8B-Instruct-Q4_K_M.gguf") == Decimal("8")
    assert estimate_size_b("/models/mistral-7.5b.gguf") == Decimal("7.5")
    assert estimate_size_b("qwen2.5-coder-32b-instruct-q5_k_m.gguf") == Decimal("32")


def test_estimate_size_unknown() -> None:
    assert estimate_size_b("model.gguf") is None
    assert estimate_size_b("phi-3-mini-3.8 B.gguf") is None
    # Only the file name counts, not parent directories.
    assert estimate_size_b("/data/70B/tiny.gguf") is None


def test_size_tier_strips_decimal_point() -> None:
    assert size_tier(Decimal("7.5")) == 75
    assert size_tier(Decimal("13")) == 13
    assert size_tier(Decimal("70")) == 70
    assert size_tier(None) == 0


def test_describe_model_and_alias() -> None:
    model = describe_model("/models/My Model 7B.gguf")
    assert model.source_path == "/models/My Model 7B.gguf"
    assert model.size_b == Decimal("7")
    assert default_alias(model.source_path) == "My-Model-7B"
