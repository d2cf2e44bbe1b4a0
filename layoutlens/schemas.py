from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class CookieConfig(BaseModel):
    name: str
    domain: Optional[str] = None
    path: Optional[str] = None
    same_site: Optional[Literal["Lax", "Strict", "None"]] = Field(default=None, alias="sameSite")
    secure: Optional[bool] = None
    http_only: Optional[bool] = Field(default=None, alias="httpOnly")

    model_config = {"populate_by_name": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Cookie name must not be empty.")
        return value


class BehaviorFlags(BaseModel):
    send_accept_language: Optional[bool] = Field(default=None, alias="sendAcceptLanguage")
    url_template: Optional[str] = Field(default=None, alias="urlTemplate")
    use_url_template: Optional[bool] = Field(default=None, alias="useUrlTemplate")

    model_config = {"populate_by_name": True}


class BrowserEngine(str, Enum):
    chromium = "chromium"
    firefox = "firefox"
    webkit = "webkit"


class JobRequest(BaseModel):
    """A screenshot job as submitted by the presentation layer."""

    url: str
    breakpoints: List[int] = Field(default_factory=list)
    locales: List[str] = Field(default_factory=list)
    cookie: CookieConfig
    behavior: BehaviorFlags = Field(default_factory=BehaviorFlags)
    profile_dir: Optional[str] = Field(default=None, alias="profileDir")
    max_concurrent_pages: Optional[int] = Field(default=None, ge=1, alias="maxConcurrentPages")
    engine: Optional[BrowserEngine] = None

    model_config = {"populate_by_name": True}

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("URL must be an absolute http(s) URL.")
        return value

    @field_validator("breakpoints")
    @classmethod
    def validate_breakpoints(cls, value: List[int]) -> List[int]:
        if any(width < 0 for width in value):
            raise ValueError("Breakpoints must be unsigned integers.")
        return value


class JobConfig(JobRequest):
    """The ``config.json`` contract read by the capture worker."""

    out_dir: str = Field(alias="outDir")

    def to_contract(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Shot(BaseModel):
    locale: str
    breakpoint: int = Field(ge=0)
    path: str
    width: int = 0
    height: int = 0
    ok: bool = True
    error: Optional[str] = None

    model_config = {"extra": "allow"}


class RunManifest(BaseModel):
    """The ``manifest.json`` contract written by the capture worker."""

    id: str
    url: str
    breakpoints: List[int]
    locales: List[str]
    cookie: CookieConfig
    behavior: BehaviorFlags
    out_dir: str
    shots: List[Shot] = Field(default_factory=list)

    model_config = {"extra": "allow", "populate_by_name": True}

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def rebased(self, run_dir: Path | str) -> RunManifest:
        """Point shots recorded under ``out_dir`` at the same files under ``run_dir``."""
        source = PurePath(self.out_dir)
        target = Path(run_dir)
        if source == PurePath(target):
            return self
        shots = []
        for shot in self.shots:
            try:
                relative = PurePath(shot.path).relative_to(source)
            except ValueError:
                shots.append(shot)
                continue
            shots.append(shot.model_copy(update={"path": str(target.joinpath(relative))}))
        return self.model_copy(update={"out_dir": str(target), "shots": shots})

    def shots_for(self, *, locale: Optional[str] = None, breakpoint: Optional[int] = None) -> List[Shot]:
        return [
            shot
            for shot in self.shots
            if (locale is None or shot.locale == locale)
            and (breakpoint is None or shot.breakpoint == breakpoint)
        ]


class ProcessState(str, Enum):
    not_started = "not_started"
    spawned = "spawned"
    succeeded = "succeeded"
    failed = "failed"
    spawn_error = "spawn_error"


class RunInfo(BaseModel):
    run_id: str
    workspace: str
    imported: bool = False
    has_manifest: bool = False


class ExportRequest(BaseModel):
    run_dir: str
    dest_zip: str


class ImportRequest(BaseModel):
    src_zip: str


class OpenGalleryRequest(BaseModel):
    run_dir: str


class FigmaImporterRequest(BaseModel):
    run_dir: str
    port: Optional[int] = Field(default=None, ge=1, le=65535)


class FigmaImporterResponse(BaseModel):
    base_url: str


class GalleryEvent(BaseModel):
    event: str
    payload: Dict[str, object]
    published_at: str
