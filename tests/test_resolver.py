from __future__ import annotations

import io
import pathlib
import tarfile
import zipfile

import httpx
import pytest

from pkg_hybrid import resolver as resolver_mod
from pkg_hybrid.capabilities import capability_of, supported_versions
from pkg_hybrid.errors import FallbackExhausted, PackagerError
from pkg_hybrid.resolver import (
    EXTENDED_RELEASES,
    FALLBACK_TABLE,
    LEGACY_TABLE,
    ExtendedVersionResolver,
    PkgFetchCli,
    check_fallback_table,
    download_url,
    is_extended_version,
)
from pkg_hybrid.target import Arch, Platform
from pkg_hybrid.tools import ToolResult

from tests.conftest import FakeToolRunner


class RecordingFetcher:
    def __init__(self, root: pathlib.Path) -> None:
        self.root = root
        self.calls: list[tuple[str, str, str]] = []

    def need(self, version, platform, arch) -> pathlib.Path:
        self.calls.append((version, str(platform.value), str(arch.value)))
        path = self.root / f"legacy-{version}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(version.encode("ascii"))
        return path


def _tar_xz(stem: str, payload: bytes) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:xz") as tf:
        info = tarfile.TarInfo(name=f"{stem}/bin/node")
        info.size = len(payload)
        tf.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


def _zip(stem: str, payload: bytes) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{stem}/node.exe", payload)
    return buf.getvalue()


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


def test_fallback_table_is_complete():
    check_fallback_table()
    for version in supported_versions():
        if version in LEGACY_TABLE:
            assert version not in FALLBACK_TABLE
            continue
        assert is_extended_version(version)
        fallback = FALLBACK_TABLE[version]
        assert capability_of(fallback).is_supported is True
        assert fallback in LEGACY_TABLE
        assert version in EXTENDED_RELEASES


def test_constructor_rejects_incomplete_table(tmp_path, monkeypatch):
    monkeypatch.delitem(resolver_mod.FALLBACK_TABLE, "node21")

    with pytest.raises(FallbackExhausted):
        ExtendedVersionResolver(tmp_path, legacy_fetcher=RecordingFetcher(tmp_path))


def test_constructor_rejects_fallback_chains(tmp_path, monkeypatch):
    monkeypatch.setitem(resolver_mod.FALLBACK_TABLE, "node22", "node21")

    with pytest.raises(FallbackExhausted):
        ExtendedVersionResolver(tmp_path, legacy_fetcher=RecordingFetcher(tmp_path))


def test_download_url():
    assert (
        download_url("21.7.3", Platform.LINUX, Arch.X64)
        == "https://nodejs.org/dist/v21.7.3/node-v21.7.3-linux-x64.tar.xz"
    )
    assert (
        download_url("21.7.3", Platform.MACOS, Arch.ARM64)
        == "https://nodejs.org/dist/v21.7.3/node-v21.7.3-darwin-arm64.tar.xz"
    )
    assert download_url("20.11.1", Platform.WINDOWS, Arch.X64).endswith("node-v20.11.1-win-x64.zip")
    assert (
        download_url("21.7.3", Platform.ALPINE, Arch.X64)
        == "https://unofficial-builds.nodejs.org/download/release/v21.7.3/node-v21.7.3-linux-x64-musl.tar.xz"
    )
    assert download_url("22.11.0", Platform.LINUX_STATIC, Arch.ARM64).endswith("node-v22.11.0-linux-arm64-musl.tar.xz")


def test_legacy_versions_go_straight_to_legacy_fetcher(tmp_path):
    fetcher = RecordingFetcher(tmp_path / "legacy")
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=fetcher,
        transport=httpx.MockTransport(_unreachable),
    )

    resolved = r.fetch("node18", Platform.LINUX, Arch.X64)

    assert resolved.version == "node18"
    assert resolved.compatibility_mode is False
    assert fetcher.calls == [("node18", "linux", "x64")]


def test_cache_hit_skips_download(tmp_path):
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(_unreachable),
    )
    cached = r.cache_path("node21", Platform.LINUX, Arch.X64)
    cached.parent.mkdir(parents=True)
    cached.write_bytes(b"cached")

    assert r.resolve("node21", Platform.LINUX, Arch.X64) == cached
    assert cached.name == "fetched-v21.7.3-linux-x64"


def test_download_extracts_node_binary(tmp_path):
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=_tar_xz("node-v22.11.0-linux-arm64", b"real-node"))

    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(handler),
    )

    resolved = r.fetch("node22", Platform.LINUX, Arch.ARM64)

    assert requested == ["https://nodejs.org/dist/v22.11.0/node-v22.11.0-linux-arm64.tar.xz"]
    assert resolved.compatibility_mode is False
    assert resolved.path.read_bytes() == b"real-node"
    assert resolved.path == r.cache_path("node22", Platform.LINUX, Arch.ARM64)
    assert [p.name for p in resolved.path.parent.iterdir()] == [resolved.path.name]


def test_download_extracts_windows_zip(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_zip("node-v21.7.3-win-x64", b"node-exe"))

    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(handler),
    )

    path = r.resolve("node21", Platform.WINDOWS, Arch.X64)

    assert path.name == "fetched-v21.7.3-win-x64.exe"
    assert path.read_bytes() == b"node-exe"


def test_download_failure_falls_back_to_legacy_fetcher(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    fetcher = RecordingFetcher(tmp_path / "legacy")
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=fetcher,
        transport=httpx.MockTransport(handler),
    )

    resolved = r.fetch("node20", Platform.LINUX, Arch.X64)

    assert resolved.compatibility_mode is True
    assert resolved.version == "node18"
    assert fetcher.calls == [("node18", "linux", "x64")]
    assert resolved.warnings == ("Using node18 binary for node20 (compatibility mode)",)
    assert r.cache_path("node20", Platform.LINUX, Arch.X64).exists() is False


def test_corrupt_archive_falls_back(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not an archive")

    fetcher = RecordingFetcher(tmp_path / "legacy")
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=fetcher,
        transport=httpx.MockTransport(handler),
    )

    resolved = r.fetch("node13", Platform.LINUX, Arch.X64)

    assert resolved.version == "node12"
    assert resolved.compatibility_mode is True


def test_unknown_version_is_exhausted(tmp_path):
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(_unreachable),
    )

    with pytest.raises(FallbackExhausted):
        r.resolve("node30", Platform.LINUX, Arch.X64)


def test_latest_resolves_to_newest_major(tmp_path):
    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(_unreachable),
    )

    assert r.cache_path("latest", Platform.LINUX, Arch.X64).name == f"fetched-v{EXTENDED_RELEASES['node24']}-linux-x64"


def test_pkg_fetch_cli_locates_fetched_binary(tmp_path):
    cache = tmp_path / "pkg-cache"
    binary = cache / "v3.5" / "fetched-v18.5.0-linuxstatic-arm64"
    binary.parent.mkdir(parents=True)
    binary.write_bytes(b"x")
    runner = FakeToolRunner()

    path = PkgFetchCli(runner, cache).need("node18", Platform.LINUX_STATIC, Arch.ARM64)

    assert path == binary
    assert runner.calls == [
        ("npx", ["pkg-fetch", "--node-range", "node18", "--platform", "linuxstatic", "--arch", "arm64"])
    ]


def test_pkg_fetch_cli_failure(tmp_path):
    runner = FakeToolRunner(failures={"pkg-fetch": ToolResult(exit_code=2, stdout="", stderr="404 Not Found")})

    with pytest.raises(PackagerError, match="404 Not Found"):
        PkgFetchCli(runner, tmp_path).need("node16", Platform.LINUX, Arch.X64)


def test_alpine_download_uses_musl_build(tmp_path):
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=_tar_xz("node-v21.7.3-linux-x64-musl", b"musl-node"))

    r = ExtendedVersionResolver(
        tmp_path / "cache",
        legacy_fetcher=RecordingFetcher(tmp_path / "legacy"),
        transport=httpx.MockTransport(handler),
    )

    resolved = r.fetch("node21", Platform.ALPINE, Arch.X64)

    assert requested == [
        "https://unofficial-builds.nodejs.org/download/release/v21.7.3/node-v21.7.3-linux-x64-musl.tar.xz"
    ]
    assert resolved.compatibility_mode is False
    assert resolved.path.name == "fetched-v21.7.3-alpine-x64"
    assert resolved.path.read_bytes() == b"musl-node"
