import asyncio
import io
import json
import sys
import time
import traceback
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from PIL import Image
from playwright.async_api import async_playwright

DEFAULT_BREAKPOINTS = [1280]
DEFAULT_LOCALE_DIR = "default"
DEFAULT_CONCURRENCY = 4
VIEWPORT_HEIGHT = 1000
GOTO_TIMEOUT_MS = 60000

AUTO_SCROLL_JS = """
async () => {
  const delay = (ms) => new Promise((r) => setTimeout(r, ms));
  const getMaxScroll = () => Math.max(document.body.scrollHeight, document.documentElement.scrollHeight);
  const viewport = window.innerHeight || 800;
  const step = Math.max(Math.floor(viewport * 0.8), 200);
  for (let y = 0; y < getMaxScroll(); y += step) {
    window.scrollTo(0, y);
    await delay(120);
  }
  window.scrollTo(0, getMaxScroll());
  await delay(200);
  window.scrollTo(0, 0);
  await delay(100);
}
"""

WAIT_FOR_IMAGES_JS = """
async () => {
  const imgs = Array.from(document.images);
  await Promise.all(imgs.map((img) => {
    if (img.complete && img.naturalWidth > 0) return Promise.resolve();
    return new Promise((resolve) => {
      img.addEventListener("load", () => resolve(), { once: true });
      img.addEventListener("error", () => resolve(), { once: true });
    });
  }));
}
"""


def _log(message: str) -> None:
    print(f"[layoutlens-runner] {message}", flush=True)


def build_url(base_url: str, behavior: dict, locale: str | None) -> str:
    template = behavior.get("urlTemplate")
    if locale is None or not behavior.get("useUrlTemplate") or not template:
        return base_url
    parts = urlsplit(base_url)
    pathname = parts.path
    if parts.query:
        pathname += "?" + parts.query
    if parts.fragment:
        pathname += "#" + parts.fragment
    rendered = template.replace("{locale}", locale, 1).replace("{pathname}", pathname, 1)
    if rendered.startswith("/"):
        return urlunsplit((parts.scheme, parts.netloc, rendered, "", ""))
    if rendered.startswith("?"):
        return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", rendered[1:], parts.fragment))
    return base_url


def build_cookie(config: dict, locale: str) -> dict:
    cookie = config.get("cookie") or {}
    host = urlsplit(config["url"].strip()).hostname or "localhost"
    is_localhost = host in {"localhost", "127.0.0.1"}
    same_site = cookie.get("sameSite") or "Lax"
    secure = (not is_localhost) if same_site == "None" else bool(cookie.get("secure"))
    return {
        "name": cookie["name"],
        "value": locale,
        "domain": cookie.get("domain") or host,
        "path": cookie.get("path") or "/",
        "sameSite": same_site,
        "secure": secure,
        "httpOnly": bool(cookie.get("httpOnly")),
    }


async def _open_context(playwright, config: dict):
    engine = config.get("engine") or "chromium"
    browser_type = getattr(playwright, engine, None) or playwright.chromium
    profile_dir = config.get("profileDir")
    if profile_dir:
        _log(f"Launching persistent {engine} context in {profile_dir}")
        return None, await browser_type.launch_persistent_context(str(profile_dir))
    _log(f"Launching {engine}")
    browser = await browser_type.launch()
    return browser, await browser.new_context()


async def _capture(context, config: dict, locale: str | None, locale_dir: Path, breakpoint: int, shots: list) -> None:
    locale_label = locale or DEFAULT_LOCALE_DIR
    url = build_url(config["url"], config.get("behavior") or {}, locale)
    target = locale_dir / f"{breakpoint}.png"
    page = await context.new_page()
    try:
        await page.set_viewport_size({"width": breakpoint, "height": VIEWPORT_HEIGHT})
        _log(f"{locale_label} @ {breakpoint}px -> {url}")
        await page.goto(url, wait_until="networkidle", timeout=GOTO_TIMEOUT_MS)
        await page.evaluate(AUTO_SCROLL_JS)
        await page.evaluate(WAIT_FOR_IMAGES_JS)
        data = await page.screenshot(path=str(target), full_page=True)
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
        shots.append(
            {
                "locale": locale_label,
                "breakpoint": breakpoint,
                "path": str(target),
                "width": width,
                "height": height,
                "ok": True,
            }
        )
    except Exception as exc:
        _log(f"Capture failed for {locale_label} @ {breakpoint}px: {exc}")
        shots.append(
            {
                "locale": locale_label,
                "breakpoint": breakpoint,
                "path": str(target),
                "width": breakpoint,
                "height": 0,
                "ok": False,
                "error": str(exc),
            }
        )
    finally:
        await page.close()


async def run(config: dict) -> dict:
    out_dir = Path(config["outDir"])
    out_dir.mkdir(parents=True, exist_ok=True)
    breakpoints = list(config.get("breakpoints") or DEFAULT_BREAKPOINTS)
    locales = list(config.get("locales") or [])
    behavior = config.get("behavior") or {}

    manifest = {
        "id": str(int(time.time() * 1000)),
        "url": config["url"],
        "breakpoints": config.get("breakpoints") or [],
        "locales": locales,
        "cookie": config.get("cookie") or {},
        "behavior": behavior,
        "out_dir": str(out_dir),
        "shots": [],
    }

    async with async_playwright() as playwright:
        browser, context = await _open_context(playwright, config)
        try:
            # Locales run one after another so the locale cookie never races.
            for locale in locales or [None]:
                headers = {}
                if locale and behavior.get("sendAcceptLanguage"):
                    headers["Accept-Language"] = locale
                await context.set_extra_http_headers(headers)
                await context.clear_cookies()
                if locale:
                    await context.add_cookies([build_cookie(config, locale)])

                label = locale or DEFAULT_LOCALE_DIR
                locale_dir = out_dir / label
                locale_dir.mkdir(parents=True, exist_ok=True)

                limit = max(1, min(int(config.get("maxConcurrentPages") or DEFAULT_CONCURRENCY), len(breakpoints)))
                semaphore = asyncio.Semaphore(limit)

                async def _bounded(width: int) -> None:
                    async with semaphore:
                        await _capture(context, config, locale, locale_dir, width, manifest["shots"])

                await asyncio.gather(*(_bounded(width) for width in breakpoints))
        finally:
            await context.close()
            if browser is not None:
                await browser.close()

    manifest_path = out_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    _log(f"Wrote {manifest_path} ({len(manifest['shots'])} shots)")
    return manifest


def main(config_path: str) -> int:
    config = json.loads(Path(config_path).read_text(encoding="utf-8"))
    try:
        asyncio.run(run(config))
    except Exception:
        _log("Capture failed; see traceback below")
        traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Expected JSON config path as argv[1]", file=sys.stderr)
        sys.exit(1)
    sys.exit(main(sys.argv[1]))
