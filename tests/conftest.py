"""
Shared fixtures and helpers for the BepInEx Mod Manager test suite.
"""

import io
import zipfile
from pathlib import Path

import pytest
import requests

from downloader import Downloader
from state_schema import GameDescriptor, GameRecord, ModDescriptor


class FakeResponse:
    def __init__(self, url: str, payload: bytes | None):
        self.url = url
        self.payload = payload
        self.status_code = 200 if payload is not None else 404

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Not Found: {self.url}")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.payload), chunk_size):
            yield self.payload[i : i + chunk_size]


class FakeSession:
    """Serves bytes from ``files`` keyed by URL; unknown URLs answer 404."""

    def __init__(self, files=None):
        self.files = dict(files or {})
        self.requests = []
        self.offline = False

    def get(self, url, stream=False, timeout=None):
        self.requests.append(url)
        if self.offline:
            raise requests.ConnectionError(f"Connection refused: {url}")
        return FakeResponse(url, self.files.get(url))


def make_zip_bytes(members: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return buf.getvalue()


def make_corrupt_zip_bytes(name: str = "Plugin.dll") -> bytes:
    """A zip whose single deflated member has a damaged compressed stream."""
    payload = b"".join(f"line {i}\n".encode() for i in range(5000))
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(name, payload)
    data = bytearray(buf.getvalue())
    start = 30 + len(name)  # local file header + file name
    for i in range(start + 40, start + 48):
        data[i] ^= 0xFF
    return bytes(data)


def make_zip(path: Path, members: dict) -> Path:
    path.write_bytes(make_zip_bytes(members))
    return path


def make_mod(mod_id="coolmod", url=None, version="1.0.0", **extra) -> ModDescriptor:
    return ModDescriptor(
        id=mod_id,
        name=mod_id.title(),
        download_url=url or f"https://example.com/{mod_id}.zip",
        version=version,
        **extra,
    )


class Prompts:
    """Scripted confirm answers plus a record of every dialog shown."""

    def __init__(self):
        self.answers = []
        self.default = False
        self.asked = []
        self.errors = []

    def confirm(self, title, msg):
        self.asked.append((title, msg))
        return self.answers.pop(0) if self.answers else self.default

    def error(self, msg):
        self.errors.append(msg)


# ── fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def prompts():
    return Prompts()


@pytest.fixture
def downloader(tmp_path, session, prompts):
    return Downloader(
        session=session, cache_dir=tmp_path / "cache", error_callback=prompts.error
    )


@pytest.fixture
def game_dir(tmp_path):
    path = tmp_path / "Desperados III"
    path.mkdir()
    return path


@pytest.fixture
def game_descriptor():
    return GameDescriptor(id="Desperados3", name="Desperados III", appid="610370")


@pytest.fixture
def game(game_dir, game_descriptor):
    return GameRecord(game_descriptor=game_descriptor, install_path=str(game_dir))
