from __future__ import annotations

import json
import os
import shutil
import socket
import subprocess
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from localtune.logger import log

PROBE_PROMPT = "ping"


@dataclass(slots=True)
class ServeConfig:
    host: str = "127.0.0.1"
    port: int = 11434

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


def _run(cmd: list[str], timeout_s: Optional[float] = None) -> tuple[int, str]:
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return proc.returncode, proc.stdout or ""
    except (OSError, subprocess.SubprocessError) as exc:
        return 1, str(exc)


class OllamaBackend:
    """
    Reload and probe models on a local Ollama runtime.

    `apply` and `stop` shell out to the ollama binary and never raise; a
    failed reload simply shows up as a failed probe afterwards.
    """

    def __init__(self, serve_cfg: Optional[ServeConfig] = None, ollama_bin: Optional[str] = None) -> None:
        self.serve_cfg = serve_cfg or ServeConfig()
        self.ollama_bin = ollama_bin or os.getenv("LOCALTUNE_OLLAMA_BIN") or "ollama"

    def is_installed(self) -> bool:
        return shutil.which(self.ollama_bin) is not None

    def apply(self, alias: str, modelfile: Path) -> bool:
        """(Re)create `alias` from `modelfile`, then unload it so the next request loads fresh."""
        code, out = _run([self.ollama_bin, "create", alias, "-f", str(modelfile)])
        if code != 0:
            log.warning("ollama create %s failed (exit %s): %s", alias, code, out.strip()[-500:])
            return False
        log.debug("ollama create %s: %s", alias, out.strip()[-500:])
        return self.stop(alias)

    def stop(self, alias: str) -> bool:
        code, out = _run([self.ollama_bin, "stop", alias])
        if code != 0:
            log.debug("ollama stop %s exited %s: %s", alias, code, out.strip()[-200:])
            return False
        return True

    def _post(self, path: str, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        url = f"{self.serve_cfg.base_url}{path}"
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(url, data=data, headers={"Content-Type": "application/json"})
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8")
        parsed = json.loads(raw) if raw.strip() else {}
        return parsed if isinstance(parsed, dict) else {}

    def probe(self, alias: str, timeout_s: float = 60.0) -> bool:
        """One-token generation. Any error or timeout counts as a failed probe."""
        payload = {
            "model": alias,
            "prompt": PROBE_PROMPT,
            "stream": False,
            "options": {"num_predict": 1},
        }
        try:
            self._post("/api/generate", payload, timeout_s)
        except urllib.error.HTTPError as exc:
            log.debug("Probe rejected for %s: HTTP %s", alias, exc.code)
            return False
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
            log.debug("Probe failed for %s: %s", alias, exc)
            return False
        except ValueError as exc:
            log.debug("Probe for %s returned an unreadable body: %s", alias, exc)
            return False
        return True

    def wait_until_ready(self, tries: int = 20, interval_s: float = 1.0) -> bool:
        url = f"{self.serve_cfg.base_url}/api/version"
        for attempt in range(max(1, tries)):
            try:
                with urllib.request.urlopen(url, timeout=2.5) as resp:
                    if 200 <= resp.status < 300:
                        return True
            except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError):
                pass
            if attempt + 1 < tries:
                time.sleep(interval_s)
        return False

    def quick_test(self, alias: str, timeout_s: float = 120.0) -> bool:
        """Ask the model to echo a fixed phrase and check that it shows up in the reply."""
        base = alias.split(":", 1)[0]
        expected = f"hello from {base}"
        payload = {
            "model": alias,
            "prompt": f"Return exactly: {expected}",
            "stream": False,
            "options": {"temperature": 0, "top_p": 1, "repeat_penalty": 1.0, "num_predict": 64, "seed": 1},
        }
        try:
            parsed = self._post("/api/generate", payload, timeout_s)
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError, ValueError) as exc:
            log.warning("Quick test: request failed for %s: %s", alias, exc)
            return False
        response = parsed.get("response")
        text = response.strip() if isinstance(response, str) else ""
        if expected in text:
            log.info("Quick test: PASS - phrase found in model output")
            return True
        log.warning("Quick test: content mismatch (expected phrase not found).")
        log.info("Sample (<=160 chars): %s", text[:160].replace("\n", " "))
        return False
