import hashlib
import json
import mimetypes
import sys
from functools import partial
from http import HTTPStatus
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlsplit

from PIL import Image

DEFAULT_PORT = 7777
MAX_SLICE_HEIGHT = 4096

INDEX_HTML = (
    "<!doctype html><html><head><meta charset=\"utf-8\"/><title>LayoutLens Run Server</title></head>"
    "<body><h1>LayoutLens Run Server</h1><p>Use <code>/manifest</code> to fetch the manifest and "
    "<code>/file?abs=</code> to fetch files.</p></body></html>"
)


def _log(message: str) -> None:
    print(f"[layoutlens-serve] {message}", flush=True)


def is_path_inside(parent: Path, child: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return True


def rebase_path(path: str, recorded_dir: str, run_dir: Path) -> str:
    """Map a path under the directory the run was captured in onto where it is served from."""
    if not recorded_dir:
        return path
    try:
        relative = Path(path).relative_to(recorded_dir)
    except ValueError:
        return path
    return str(run_dir / relative)


class RunRequestHandler(SimpleHTTPRequestHandler):
    """Serve one run directory read-only, plus the manifest/file/meta endpoints the plugin uses."""

    def __init__(self, *args, run_dir: Path, port: int, **kwargs) -> None:
        self.run_dir = run_dir
        self.port = port
        super().__init__(*args, directory=str(run_dir), **kwargs)

    def end_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        super().end_headers()

    def log_message(self, format: str, *args) -> None:  # noqa: A002 - signature fixed by BaseHTTPRequestHandler
        _log(format % args)

    def _send_bytes(self, status: int, body: bytes, content_type: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_text(self, status: int, text: str) -> None:
        self._send_bytes(status, text.encode("utf-8"), "text/plain; charset=utf-8")

    def _send_json(self, payload: object) -> None:
        self._send_bytes(HTTPStatus.OK, json.dumps(payload).encode("utf-8"), "application/json")

    def do_OPTIONS(self) -> None:  # noqa: N802 - mandated by BaseHTTPRequestHandler
        self.send_response(HTTPStatus.NO_CONTENT)
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802 - mandated by BaseHTTPRequestHandler
        parts = urlsplit(self.path)
        query = parse_qs(parts.query)
        if parts.path in {"/", "/index.html"}:
            self._send_bytes(HTTPStatus.OK, INDEX_HTML.encode("utf-8"), "text/html; charset=utf-8")
        elif parts.path in {"/manifest", "/manifest.json"}:
            self._handle_manifest()
        elif parts.path == "/file":
            self._handle_file(query)
        elif parts.path == "/meta":
            self._handle_meta(query)
        else:
            super().do_GET()

    def _handle_manifest(self) -> None:
        manifest_path = self.run_dir / "manifest.json"
        if not manifest_path.is_file():
            self._send_text(HTTPStatus.NOT_FOUND, "Not Found")
            return
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        recorded_dir = manifest.get("out_dir") or ""
        manifest["_servedBy"] = f"http://localhost:{self.port}"
        manifest["out_dir"] = str(self.run_dir)
        shots = []
        for shot in manifest.get("shots") or []:
            local_path = rebase_path(str(shot.get("path", "")), recorded_dir, self.run_dir)
            shots.append({**shot, "path": f"/file?abs={quote(local_path, safe='')}"})
        manifest["shots"] = shots
        self._send_json(manifest)

    def _target(self, query: dict):
        values = query.get("abs")
        if not values or not values[0]:
            self._send_text(HTTPStatus.BAD_REQUEST, "Bad Request")
            return None
        target = Path(unquote(values[0]))
        if not target.is_absolute():
            target = self.run_dir / target
        if not is_path_inside(self.run_dir, target):
            self._send_text(HTTPStatus.FORBIDDEN, "Forbidden")
            return None
        if not target.is_file():
            self._send_text(HTTPStatus.NOT_FOUND, "Not Found")
            return None
        return target

    def _handle_meta(self, query: dict) -> None:
        target = self._target(query)
        if target is None:
            return
        try:
            with Image.open(target) as image:
                width, height = image.size
        except OSError:
            self._send_text(HTTPStatus.NOT_FOUND, "Not Found")
            return
        self._send_json({"width": width, "height": height})

    def _handle_file(self, query: dict) -> None:
        target = self._target(query)
        if target is None:
            return
        if "sliceTop" in query or "sliceHeight" in query:
            sliced = self._slice(target, query)
            if sliced is not None:
                self._send_bytes(HTTPStatus.OK, sliced.read_bytes(), "image/jpeg")
                return
        content_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
        self._send_bytes(HTTPStatus.OK, target.read_bytes(), content_type)

    def _slice(self, target: Path, query: dict):
        """Cut a vertical band out of a tall screenshot; the plugin cannot place images over 4096px."""
        try:
            top = max(0, int(query.get("sliceTop", ["0"])[0] or 0))
            height = max(1, min(MAX_SLICE_HEIGHT, int(query.get("sliceHeight", ["0"])[0] or 0)))
        except ValueError:
            return None
        cache_dir = self.run_dir / ".cache"
        digest = hashlib.sha1(f"{target}_{top}_{height}".encode("utf-8")).hexdigest()
        out_path = cache_dir / f"{digest}_slice.jpg"
        if out_path.exists():
            return out_path
        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
            with Image.open(target) as image:
                bottom = min(image.height, top + height)
                if top >= bottom:
                    return None
                band = image.crop((0, top, image.width, bottom)).convert("RGB")
                band.save(out_path, format="JPEG", quality=95)
        except OSError as exc:
            _log(f"Slice failed for {target}: {exc}")
            return None
        return out_path


def build_server(run_dir: Path, port: int, host: str = "127.0.0.1") -> ThreadingHTTPServer:
    handler = partial(RunRequestHandler, run_dir=run_dir.resolve(), port=port)
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server


def main(argv: list) -> int:
    if len(argv) < 2:
        print("Usage: serve_run.py <runDir> [port]", file=sys.stderr)
        return 1
    run_dir = Path(argv[1])
    port = int(argv[2]) if len(argv) > 2 and argv[2] else DEFAULT_PORT
    server = build_server(run_dir, port)
    _log(f"Serving {run_dir} at http://localhost:{port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
