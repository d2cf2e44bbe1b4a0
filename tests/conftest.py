from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

from layoutlens.schemas import BehaviorFlags, CookieConfig, JobRequest
from layoutlens.services.artifacts import RunStore
from layoutlens.services.gallery import GalleryNotifier
from layoutlens.services.orchestrator import RunOrchestrator
from layoutlens.settings import Settings

# Stand-ins for the Playwright runner: same argv/config/manifest contract, no browser.
FAKE_CAPTURE_SCRIPT = """
import json
import sys
from pathlib import Path

config = json.loads(Path(sys.argv[1]).read_text(encoding="utf-8"))
out_dir = Path(config["outDir"])
shots = []
for locale in config["locales"]:
    (out_dir / locale).mkdir(parents=True, exist_ok=True)
    for width in config["breakpoints"]:
        target = out_dir / locale / f"{width}.png"
        target.write_bytes(b"\\x89PNG fake " + str(width).encode())
        shots.append({"locale": locale, "breakpoint": width, "path": str(target),
                      "width": width, "height": 900, "ok": True})
manifest = {
    "id": "1700000000000",
    "url": config["url"],
    "breakpoints": config["breakpoints"],
    "locales": config["locales"],
    "cookie": config["cookie"],
    "behavior": config["behavior"],
    "out_dir": config["outDir"],
    "shots": shots,
}
(out_dir / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
print("captured", len(shots))
"""

FAILING_CAPTURE_SCRIPT = """
import sys
print("navigating")
sys.stderr.write("render exploded: net::ERR_NAME_NOT_RESOLVED\\n")
sys.exit(4)
"""

SILENT_FAILING_SCRIPT = """
import sys
sys.exit(2)
"""

NO_MANIFEST_SCRIPT = """
print("pretending to succeed")
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        artifacts_root=tmp_path / "artifacts",
        worker_runtime=sys.executable,
        extra_path_dirs=[],
        worker_timeout_seconds=60,
        interchange_port=7777,
    )


@pytest.fixture
def store(settings: Settings) -> RunStore:
    return RunStore(root=settings.artifacts_root)


@pytest.fixture
def notifier() -> GalleryNotifier:
    return GalleryNotifier(history_limit=20)


@pytest.fixture
def make_orchestrator(
    settings: Settings, store: RunStore, notifier: GalleryNotifier
) -> Callable[..., RunOrchestrator]:
    def _factory(script: str = FAKE_CAPTURE_SCRIPT, **kwargs) -> RunOrchestrator:
        return RunOrchestrator(
            store=store,
            settings=kwargs.pop("settings", settings),
            notifier=notifier,
            capture_script=script,
            **kwargs,
        )

    return _factory


@pytest.fixture
def job_request() -> JobRequest:
    return JobRequest(
        url="https://example.com",
        breakpoints=[320, 768, 1440],
        locales=["en-US", "fr-FR"],
        cookie=CookieConfig(name="session", secure=True),
        behavior=BehaviorFlags(),
    )
