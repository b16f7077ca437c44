"""Runtime binary resolution for versions beyond the legacy fetch table.

The legacy fetch mechanism (``pkg-fetch``) only ships binaries for the even
majors listed in :data:`LEGACY_TABLE`. For every other supported major this
module:

1. Returns a cached binary if one exists under the configured cache directory.
2. Otherwise downloads the official release archive and extracts ``node``.
3. If that fails, falls back to the nearest legacy major (one hop, see
   :data:`FALLBACK_TABLE`) through the legacy fetch mechanism and warns that
   compatibility mode is in effect.
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import tarfile
import tempfile
import zipfile
from typing import BinaryIO, Protocol

import httpx

from pkg_hybrid.capabilities import (
    MAX_SUPPORTED_MAJOR,
    MIN_SUPPORTED_MAJOR,
    capability_of,
    normalize_version_tag,
    parse_major,
)
from pkg_hybrid.errors import FallbackExhausted, PackagerError
from pkg_hybrid.target import Arch, Platform, enum_value, executable_suffix
from pkg_hybrid.tools import ToolRunner, run_checked


LEGACY_TABLE: tuple[str, ...] = ("node10", "node12", "node14", "node16", "node18")

EXTENDED_RELEASES: dict[str, str] = {
    "node11": "11.15.0",
    "node13": "13.14.0",
    "node15": "15.14.0",
    "node17": "17.9.1",
    "node19": "19.9.0",
    "node20": "20.11.1",
    "node21": "21.7.3",
    "node22": "22.11.0",
    "node23": "23.11.0",
    "node24": "24.0.0",
}

FALLBACK_TABLE: dict[str, str] = {
    "node11": "node10",
    "node13": "node12",
    "node15": "node14",
    "node17": "node16",
    "node19": "node18",
    "node20": "node18",
    "node21": "node18",
    "node22": "node18",
    "node23": "node18",
    "node24": "node18",
}

DIST_BASE_URL: str = "https://nodejs.org/dist"

# musl builds are only published on the unofficial-builds mirror.
MUSL_BASE_URL: str = "https://unofficial-builds.nodejs.org/download/release"

# pkg-fetch keeps its binaries under a versioned subdirectory of the cache.
CACHE_LAYOUT: str = "v3.5"

_DIST_PLATFORMS: dict[str, str] = {
    Platform.LINUX.value: "linux",
    Platform.MACOS.value: "darwin",
    Platform.WINDOWS.value: "win",
}

_MUSL_PLATFORMS: tuple[str, ...] = (Platform.ALPINE.value, Platform.LINUX_STATIC.value)

_PKG_PLATFORMS: dict[str, str] = {
    Platform.WINDOWS.value: "win",
    Platform.LINUX_STATIC.value: "linuxstatic",
}


@dataclass(frozen=True, slots=True)
class ResolvedBinary:
    """A runtime binary available on local disk.

    :ivar path: Path to the executable.
    :ivar version: Version tag the binary actually provides.
    :ivar compatibility_mode: ``True`` when a fallback version was substituted.
    :ivar warnings: Warnings produced while resolving.
    """

    path: pathlib.Path
    version: str
    compatibility_mode: bool = False
    warnings: tuple[str, ...] = ()


class LegacyFetcher(Protocol):
    """The legacy fetch mechanism for versions in :data:`LEGACY_TABLE`."""

    def need(self, version: str, platform: Platform | str, arch: Arch | str) -> pathlib.Path:
        """Return a local binary for ``version``/``platform``/``arch``."""
        ...


def is_extended_version(version: str) -> bool:
    """Check whether a version needs extended resolution (not in the legacy table)."""

    tag: str = normalize_version_tag(version)
    return capability_of(tag).is_supported is True and tag not in LEGACY_TABLE


def check_fallback_table() -> None:
    """Verify the fallback table covers every extended version.

    :raises FallbackExhausted: If a supported non-legacy version has no usable
        fallback or no pinned release.
    """

    for n in range(MIN_SUPPORTED_MAJOR, MAX_SUPPORTED_MAJOR + 1):
        tag: str = f"node{n}"
        if tag in LEGACY_TABLE:
            continue
        if tag not in EXTENDED_RELEASES:
            raise FallbackExhausted(f"Extended version {tag} has no pinned release")
        fallback: str | None = FALLBACK_TABLE.get(tag)
        if fallback is None:
            raise FallbackExhausted(f"Extended version {tag} has no fallback entry")
        if fallback not in LEGACY_TABLE:
            raise FallbackExhausted(
                f"Fallback for {tag} is {fallback}, which the legacy fetcher does not provide"
            )
        if capability_of(fallback).is_supported is False:
            raise FallbackExhausted(f"Fallback for {tag} is unsupported version {fallback}")


def download_url(release: str, platform: Platform | str, arch: Arch | str) -> str:
    """Build the distribution URL for a release archive.

    Alpine and linux-static targets get the ``-musl`` build from
    :data:`MUSL_BASE_URL`; everything else comes from :data:`DIST_BASE_URL`.

    :param release: Full release number (e.g. ``21.7.3``).
    :param platform: Target platform.
    :param arch: Target architecture.
    :returns: Archive URL.
    :raises PackagerError: If the platform has no official archive.
    """

    if enum_value(platform) in _MUSL_PLATFORMS:
        return f"{MUSL_BASE_URL}/v{release}/node-v{release}-linux-{enum_value(arch)}-musl.tar.xz"

    dist_platform: str | None = _DIST_PLATFORMS.get(enum_value(platform))
    if dist_platform is None:
        raise PackagerError(f"No official Node.js archive for platform {enum_value(platform)}")
    ext: str = ".zip" if platform == Platform.WINDOWS else ".tar.xz"
    return f"{DIST_BASE_URL}/v{release}/node-v{release}-{dist_platform}-{enum_value(arch)}{ext}"


def pkg_platform_name(platform: Platform | str) -> str:
    """Spell a platform the way ``pkg`` and ``pkg-fetch`` expect it."""

    value: str = enum_value(platform)
    return _PKG_PLATFORMS.get(value, value)


class ExtendedVersionResolver:
    """Resolve runtime binaries for any supported version.

    :param cache_dir: Binary cache root (explicit configuration, no env lookup).
    :param legacy_fetcher: Fetch mechanism for legacy-table versions.
    :param transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    :param timeout: Download timeout in seconds.
    :param logger: Logger for progress output.
    :raises FallbackExhausted: If the fallback table is inconsistent.
    """

    def __init__(
        self,
        cache_dir: pathlib.Path,
        *,
        legacy_fetcher: LegacyFetcher,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 120.0,
        logger: logging.Logger | None = None,
    ) -> None:
        check_fallback_table()
        if logger is None:
            logger = logging.getLogger("pkg_hybrid")
        self._cache_dir: pathlib.Path = cache_dir
        self._legacy_fetcher: LegacyFetcher = legacy_fetcher
        self._transport: httpx.BaseTransport | None = transport
        self._timeout: float = timeout
        self._logger: logging.Logger = logger

    @property
    def cache_dir(self) -> pathlib.Path:
        return self._cache_dir

    def cache_path(self, version: str, platform: Platform | str, arch: Arch | str) -> pathlib.Path:
        """Local cache path for an extended version's binary.

        :raises FallbackExhausted: If ``version`` is not an extended version.
        """

        tag: str = normalize_version_tag(version)
        release: str | None = EXTENDED_RELEASES.get(tag)
        if release is None:
            raise FallbackExhausted(f"Node.js version {tag} is not an extended version")
        filename: str = (
            f"fetched-v{release}-{pkg_platform_name(platform)}-{enum_value(arch)}"
            f"{executable_suffix(platform)}"
        )
        return self._cache_dir / CACHE_LAYOUT / filename

    def resolve(self, version: str, platform: Platform | str, arch: Arch | str) -> pathlib.Path:
        """Return a local binary path for ``version``/``platform``/``arch``."""

        return self.fetch(version, platform, arch).path

    def fetch(self, version: str, platform: Platform | str, arch: Arch | str) -> ResolvedBinary:
        """Resolve a binary and report how it was obtained.

        :param version: Version tag (``node21``, ``latest`` ...).
        :param platform: Target platform.
        :param arch: Target architecture.
        :returns: Resolved binary.
        :raises FallbackExhausted: If the version has no fallback entry.
        """

        tag: str = normalize_version_tag(version)
        if tag in LEGACY_TABLE:
            return ResolvedBinary(path=self._legacy_fetcher.need(tag, platform, arch), version=tag)

        if tag not in EXTENDED_RELEASES:
            raise FallbackExhausted(f"No binary source or fallback for Node.js version {tag}")

        release: str = EXTENDED_RELEASES[tag]
        local_path: pathlib.Path = self.cache_path(tag, platform, arch)
        triple: str = f"{tag}-{enum_value(platform)}-{enum_value(arch)}"
        self._logger.info(f"fetching Node.js {release} for {triple}")

        if local_path.is_file() is True:
            self._logger.debug(f"binary cache hit: {local_path}")
            return ResolvedBinary(path=local_path, version=tag)

        try:
            url: str = download_url(release, platform, arch)
            self._download_official_binary(url=url, release=release, platform=platform, local_path=local_path)
        except (httpx.HTTPError, OSError, tarfile.TarError, zipfile.BadZipFile, KeyError, PackagerError) as e:
            self._logger.warning(f"failed to download official binary for {triple}: {e}")
            return self._fallback(tag, platform, arch)

        self._logger.info(f"downloaded Node.js {release} binary to {local_path}")
        return ResolvedBinary(path=local_path, version=tag)

    def _fallback(self, tag: str, platform: Platform | str, arch: Arch | str) -> ResolvedBinary:
        """Delegate to the legacy fetcher using the fallback table.

        :raises FallbackExhausted: If ``tag`` has no fallback entry.
        """

        fallback: str | None = FALLBACK_TABLE.get(tag)
        if fallback is None:
            raise FallbackExhausted(f"No fallback version available for {tag}")

        warning: str = f"Using {fallback} binary for {tag} (compatibility mode)"
        self._logger.warning(f"{warning}")
        path: pathlib.Path = self._legacy_fetcher.need(fallback, platform, arch)
        return ResolvedBinary(path=path, version=fallback, compatibility_mode=True, warnings=(warning,))

    def _download_official_binary(
        self,
        *,
        url: str,
        release: str,
        platform: Platform | str,
        local_path: pathlib.Path,
    ) -> None:
        """Download a release archive and extract the runtime executable.

        The executable is written next to its final path and renamed into place
        so an interrupted download never leaves a partial cache entry.
        """

        local_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger.debug(f"downloading from {url}")

        with tempfile.TemporaryDirectory(prefix="pkg_hybrid_download_", dir=local_path.parent) as td:
            archive_path: pathlib.Path = pathlib.Path(td) / url.rsplit("/", 1)[-1]
            with httpx.Client(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(archive_path, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)

            # The archive's top-level directory is the archive name minus its extension.
            stem: str = archive_path.name.removesuffix(".zip").removesuffix(".tar.xz")
            tmp_binary: pathlib.Path = pathlib.Path(td) / "node.partial"
            if platform == Platform.WINDOWS:
                with zipfile.ZipFile(archive_path, "r") as zf:
                    with zf.open(f"{stem}/node.exe") as src, open(tmp_binary, "wb") as dst:
                        _copy_stream(src, dst)
            else:
                with tarfile.open(archive_path, "r:xz") as tf:
                    member = tf.getmember(f"{stem}/bin/node")
                    src_file = tf.extractfile(member)
                    if src_file is None:
                        raise PackagerError(f"Archive entry is not a file: {member.name}")
                    with src_file, open(tmp_binary, "wb") as dst:
                        _copy_stream(src_file, dst)

            os.chmod(tmp_binary, 0o755)
            tmp_binary.replace(local_path)


def _copy_stream(src: BinaryIO, dst: BinaryIO) -> None:
    while True:
        chunk: bytes = src.read(1024 * 1024)
        if len(chunk) == 0:
            break
        dst.write(chunk)


class PkgFetchCli:
    """:class:`LegacyFetcher` that drives the ``pkg-fetch`` command line tool.

    :param runner: Tool runner.
    :param cache_dir: The cache directory ``pkg-fetch`` writes into.
    """

    def __init__(self, runner: ToolRunner, cache_dir: pathlib.Path) -> None:
        self._runner: ToolRunner = runner
        self._cache_dir: pathlib.Path = cache_dir

    def need(self, version: str, platform: Platform | str, arch: Arch | str) -> pathlib.Path:
        tag: str = normalize_version_tag(version)
        pkg_platform: str = pkg_platform_name(platform)
        run_checked(
            self._runner,
            "npx",
            ["pkg-fetch", "--node-range", tag, "--platform", pkg_platform, "--arch", enum_value(arch)],
            summary=f"pkg-fetch failed for {tag}-{pkg_platform}-{enum_value(arch)}",
        )

        major: int | None = parse_major(tag)
        pattern: str = f"v*/fetched-v{major}.*-{pkg_platform}-{enum_value(arch)}"
        candidates: list[pathlib.Path] = sorted(
            self._cache_dir.glob(pattern),
            key=lambda p: p.stat().st_mtime,
        )
        if len(candidates) == 0:
            raise PackagerError(
                f"pkg-fetch reported success but no binary matching {pattern} exists in {self._cache_dir}"
            )
        return candidates[-1]
