from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from localtune.autotune import Tuner
from localtune.backend_ollama import OllamaBackend, ServeConfig
from localtune.config import AcceleratorProfile, TuneOutcome
from localtune.defaults import choose_defaults, headroom_caps
from localtune.hardware import detect_accelerator, memory_gib
from localtune.logger import log, setup_logger
from localtune.model_size import default_alias, describe_model, size_tier
from localtune.settings import LocalTuneSettings, SettingsStore, coerce_setting


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return value


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Register GGUF models with Ollama and auto-tune their runtime parameters.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    register = sub.add_parser("register", help="Register GGUF file(s) with Ollama and tune them.")
    register.add_argument("models", nargs="+", help="Path(s) to .gguf model files.")
    register.add_argument("--alias", help="Alias to register under (single model only).")
    register.add_argument("--workdir", help="Directory for generated Modelfiles (default ~/.localtune).")
    register.add_argument(
        "--skip-quick-test",
        action="store_true",
        help="Do not run the echo test after tuning.",
    )
    _add_runtime_args(register)
    register.add_argument("--max-attempts", type=_positive_int, help="Probe attempts before giving up (default 6).")
    register.add_argument("--num-thread", type=_positive_int, help="Override num_thread (default: logical cores).")

    defaults = sub.add_parser("defaults", help="Show the initial parameters for a model without touching Ollama.")
    defaults.add_argument("model", help="Path or file name of a .gguf model.")
    defaults.add_argument("--vram-mib", type=int, help="Assume this much accelerator memory instead of detecting it.")
    defaults.add_argument("--num-thread", type=_positive_int, help="Override num_thread (default: logical cores).")

    sub.add_parser("gpu", help="Show the detected accelerator.")

    probe = sub.add_parser("probe", help="Send one 1-token request to a registered model.")
    probe.add_argument("alias")
    _add_runtime_args(probe)

    settings = sub.add_parser("settings", help="Show or change stored settings.")
    settings_sub = settings.add_subparsers(dest="settings_cmd", required=True)
    settings_sub.add_parser("show", help="Show current settings.")
    settings_set = settings_sub.add_parser("set", help="Set one setting.")
    settings_set.add_argument("key")
    settings_set.add_argument("value")
    settings_sub.add_parser("reset", help="Restore default settings.")
    return p


def _add_runtime_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host")
    parser.add_argument("--port", type=_positive_int)
    parser.add_argument("--probe-timeout", type=_positive_float, help="Probe timeout in seconds (default 60).")


def _backend(args: argparse.Namespace, settings: LocalTuneSettings) -> OllamaBackend:
    serve_cfg = ServeConfig(host=args.host or settings.host, port=args.port or settings.port)
    return OllamaBackend(serve_cfg=serve_cfg, ollama_bin=settings.ollama_bin)


def _workdir(args: argparse.Namespace, settings: LocalTuneSettings) -> Path:
    raw = args.workdir or settings.workdir
    return Path(raw).expanduser() if raw else Path.home() / ".localtune"


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _cmd_register(args: argparse.Namespace) -> int:
    if args.alias and len(args.models) > 1:
        print("--alias can only be used with a single model.", file=sys.stderr)
        return 2

    settings = SettingsStore().load()
    backend = _backend(args, settings)
    if not backend.is_installed():
        print(f"Ollama binary not found: {backend.ollama_bin}", file=sys.stderr)
        return 2
    if not backend.wait_until_ready():
        log.error("Ollama not responding at %s. Check: journalctl -u ollama -n 100", backend.serve_cfg.base_url)
        return 1

    workdir = _workdir(args, settings)
    log.info("Using workdir: %s", workdir)
    accelerator = detect_accelerator()
    tuner = Tuner(
        backend,
        workdir=workdir,
        probe_timeout_s=args.probe_timeout or settings.probe_timeout_s,
        max_attempts=args.max_attempts or settings.max_attempts,
        num_thread=args.num_thread or settings.num_thread,
    )

    results: list[dict[str, Any]] = []
    status = 0
    for raw_path in args.models:
        path = Path(raw_path).expanduser()
        if not path.is_file():
            log.error("File not found: %s", raw_path)
            status = 1
            continue
        if path.suffix.lower() != ".gguf":
            log.warning("File does not end in .gguf; continuing.")

        alias = args.alias or default_alias(str(path))
        log.info("Using model alias: %s", alias)
        try:
            config, outcome = tuner.tune(describe_model(str(path.resolve())), accelerator, alias=alias)
        except KeyboardInterrupt:
            log.warning("Tuning of '%s' interrupted; treating it as exhausted.", alias)
            results.append({"alias": alias, "model": str(path), "outcome": TuneOutcome.EXHAUSTED_FAILURE.value})
            _dump(results)
            return 130

        quick_ok: Optional[bool] = None
        if outcome is TuneOutcome.EXHAUSTED_FAILURE:
            status = 1
        elif not args.skip_quick_test:
            quick_ok = backend.quick_test(alias)

        results.append(
            {
                "alias": alias,
                "model": str(path),
                "modelfile": str(tuner.modelfile_path(alias)),
                "outcome": outcome.value,
                "config": asdict(config),
                "quick_test": quick_ok,
            }
        )
    _dump(results)
    return status


def _cmd_defaults(args: argparse.Namespace) -> int:
    model = describe_model(args.model)
    if args.vram_mib is not None:
        accelerator = AcceleratorProfile(device_name=None, memory_mib=max(0, args.vram_mib))
    else:
        accelerator = detect_accelerator()
    cfg = choose_defaults(accelerator.memory_mib, model.size_b, args.num_thread)
    _dump(
        {
            "model": {
                "source_path": model.source_path,
                "size_b": str(model.size_b) if model.size_b is not None else None,
                "size_tier": size_tier(model.size_b),
            },
            "accelerator": asdict(accelerator),
            "defaults": asdict(cfg),
            "caps": asdict(headroom_caps(accelerator.memory_mib)),
        }
    )
    return 0


def _cmd_gpu() -> int:
    accelerator = detect_accelerator()
    payload: dict[str, Any] = asdict(accelerator)
    payload["memory_gib"] = memory_gib(accelerator.memory_mib) if accelerator.known else None
    _dump(payload)
    return 0


def _cmd_probe(args: argparse.Namespace) -> int:
    settings = SettingsStore().load()
    backend = _backend(args, settings)
    ok = backend.probe(args.alias, args.probe_timeout or settings.probe_timeout_s)
    _dump({"alias": args.alias, "ok": ok})
    return 0 if ok else 1


def _cmd_settings(args: argparse.Namespace) -> int:
    store = SettingsStore()
    settings = store.load()
    if args.settings_cmd == "show":
        _dump(asdict(settings))
        return 0
    if args.settings_cmd == "set":
        try:
            value = coerce_setting(args.key, args.value)
        except KeyError:
            print(f"Unknown setting: {args.key}", file=sys.stderr)
            return 2
        except ValueError as exc:
            print(f"Invalid value for {args.key}: {exc}", file=sys.stderr)
            return 2
        setattr(settings, args.key, value)
        store.save(settings)
        _dump(asdict(settings))
        return 0
    if args.settings_cmd == "reset":
        settings = LocalTuneSettings()
        store.save(settings)
        _dump(asdict(settings))
        return 0
    return 2


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO)
    if args.cmd == "register":
        raise SystemExit(_cmd_register(args))
    if args.cmd == "defaults":
        raise SystemExit(_cmd_defaults(args))
    if args.cmd == "gpu":
        raise SystemExit(_cmd_gpu())
    if args.cmd == "probe":
        raise SystemExit(_cmd_probe(args))
    if args.cmd == "settings":
        raise SystemExit(_cmd_settings(args))
    raise SystemExit(2)


if __name__ == "__main__":
    main()
