from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterator, Tuple
from urllib.parse import quote

import pytest
from PIL import Image

from layoutlens.services import serve_script
from layoutlens.services.archive import pack, unpack
from layoutlens.services.artifacts import RunStore


def _write_run(run_dir: Path) -> None:
    (run_dir / "en-US").mkdir(parents=True, exist_ok=True)
    shot_paths = []
    for width in (320, 768):
        shot_path = run_dir / "en-US" / f"{width}.png"
        Image.new("RGB", (width, 5000), color=(200, 40, 40)).save(shot_path, format="PNG")
        shot_paths.append((width, shot_path))
    (run_dir / "config.json").write_text(json.dumps({"url": "https://example.com"}), encoding="utf-8")
    manifest = {
        "id": "1",
        "url": "https://example.com",
        "breakpoints": [320, 768],
        "locales": ["en-US"],
        "cookie": {"name": "session"},
        "behavior": {},
        "out_dir": str(run_dir),
        "shots": [
            {"locale": "en-US", "breakpoint": width, "path": str(path), "ok": True}
            for width, path in shot_paths
        ],
    }
    (run_dir / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")


@contextmanager
def _serve(run_dir: Path) -> Iterator[str]:
    server = serve_script.build_server(run_dir, 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def served_run(tmp_path: Path) -> Generator[Tuple[str, Path], None, None]:
    run_dir = tmp_path / "run"
    _write_run(run_dir)
    with _serve(run_dir) as base_url:
        yield base_url, run_dir


def _get(url: str) -> Tuple[int, dict, bytes]:
    with urllib.request.urlopen(url, timeout=10) as response:
        return response.status, dict(response.headers), response.read()


@pytest.mark.integration
def test_manifest_paths_are_rewritten(served_run: Tuple[str, Path]) -> None:
    base_url, run_dir = served_run

    status, headers, body = _get(f"{base_url}/manifest")

    assert status == 200
    assert headers["Access-Control-Allow-Origin"] == "*"
    manifest = json.loads(body)
    assert manifest["_servedBy"].startswith("http://localhost:")
    shot_path = str(run_dir.resolve() / "en-US" / "320.png")
    assert manifest["shots"][0]["path"] == f"/file?abs={quote(shot_path, safe='')}"


@pytest.mark.integration
def test_rewritten_shot_path_serves_the_image(served_run: Tuple[str, Path]) -> None:
    base_url, run_dir = served_run
    manifest = json.loads(_get(f"{base_url}/manifest.json")[2])

    status, headers, body = _get(f"{base_url}{manifest['shots'][0]['path']}")

    assert status == 200
    assert headers["Content-Type"] == "image/png"
    assert body == (run_dir / "en-US" / "320.png").read_bytes()


@pytest.mark.integration
def test_meta_reports_image_dimensions(served_run: Tuple[str, Path]) -> None:
    base_url, run_dir = served_run
    target = quote(str(run_dir / "en-US" / "320.png"), safe="")

    status, _headers, body = _get(f"{base_url}/meta?abs={target}")

    assert status == 200
    assert json.loads(body) == {"width": 320, "height": 5000}


@pytest.mark.integration
def test_slice_is_clamped_and_returned_as_jpeg(served_run: Tuple[str, Path]) -> None:
    base_url, run_dir = served_run
    target = quote(str(run_dir / "en-US" / "320.png"), safe="")

    status, headers, body = _get(f"{base_url}/file?abs={target}&sliceTop=100&sliceHeight=9000")

    assert status == 200
    assert headers["Content-Type"] == "image/jpeg"
    cached = list((run_dir / ".cache").glob("*_slice.jpg"))
    assert len(cached) == 1
    assert cached[0].read_bytes() == body
    with Image.open(cached[0]) as band:
        assert band.size == (320, 4096)


@pytest.mark.integration
def test_file_outside_run_dir_is_forbidden(served_run: Tuple[str, Path], tmp_path: Path) -> None:
    base_url, _run_dir = served_run
    secret = tmp_path / "secret.txt"
    secret.write_text("nope", encoding="utf-8")

    with pytest.raises(urllib.error.HTTPError) as excinfo:
        _get(f"{base_url}/file?abs={quote(str(secret), safe='')}")
    assert excinfo.value.code == 403


@pytest.mark.integration
def test_file_requires_abs_parameter(served_run: Tuple[str, Path]) -> None:
    base_url, _run_dir = served_run

    with pytest.raises(urllib.error.HTTPError) as excinfo:
        _get(f"{base_url}/file")
    assert excinfo.value.code == 400


@pytest.mark.integration
def test_static_files_and_preflight(served_run: Tuple[str, Path]) -> None:
    base_url, _run_dir = served_run

    status, _headers, body = _get(f"{base_url}/config.json")
    assert status == 200
    assert json.loads(body) == {"url": "https://example.com"}

    request = urllib.request.Request(f"{base_url}/manifest", method="OPTIONS")
    with urllib.request.urlopen(request, timeout=10) as response:
        assert response.status == 204
        assert response.headers["Access-Control-Allow-Methods"] == "GET, OPTIONS"


@pytest.mark.unit
def test_is_path_inside(tmp_path: Path) -> None:
    assert serve_script.is_path_inside(tmp_path, tmp_path / "a" / "b.png")
    assert not serve_script.is_path_inside(tmp_path / "a", tmp_path / "a" / ".." / "b.png")


@pytest.mark.integration
def test_imported_run_serves_every_shot(store: RunStore, tmp_path: Path) -> None:
    original = store.allocate()
    _write_run(original.path)
    archive_path = tmp_path / "gallery.zip"
    pack(original.path, archive_path)
    imported = unpack(archive_path, store)

    with _serve(imported.path) as base_url:
        manifest = json.loads(_get(f"{base_url}/manifest")[2])
        assert manifest["out_dir"] == str(imported.path.resolve())
        assert len(manifest["shots"]) == 2
        for shot in manifest["shots"]:
            status, headers, body = _get(f"{base_url}{shot['path']}")
            assert status == 200
            assert headers["Content-Type"] == "image/png"
            expected = imported.path / "en-US" / f"{shot['breakpoint']}.png"
            assert body == expected.read_bytes()


@pytest.mark.unit
def test_rebase_path_only_moves_paths_under_the_recorded_dir(tmp_path: Path) -> None:
    run_dir = tmp_path / "import-1"

    assert serve_script.rebase_path("/old/run/en-US/320.png", "/old/run", run_dir) == str(run_dir / "en-US" / "320.png")
    assert serve_script.rebase_path("/elsewhere/320.png", "/old/run", run_dir) == "/elsewhere/320.png"
    assert serve_script.rebase_path("/old/run/320.png", "", run_dir) == "/old/run/320.png"
