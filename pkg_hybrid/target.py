"""Target parsing and validation.

This module is intentionally small and "pragmatic":

- It parses target triples such as ``node21-linux-x64`` or
  ``latest-linux-static-arm64`` into a :class:`Target`.
- It accepts the spellings other tools use (``win``, ``darwin``,
  ``linuxstatic``, ``x86_64``, ``aarch64`` ...).
- It validates a target against the supported versions, platforms and
  architectures without side effects.
"""

from dataclasses import dataclass
import enum
import platform as host_platform
import sys

from pkg_hybrid.capabilities import (
    LATEST_TAG,
    MAX_SUPPORTED_MAJOR,
    MIN_SUPPORTED_MAJOR,
    CapabilityInfo,
    capability_of,
    normalize_version_tag,
)
from pkg_hybrid.errors import ValidationError


class Platform(str, enum.Enum):
    """Supported target platforms."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"
    ALPINE = "alpine"
    LINUX_STATIC = "linux-static"


class Arch(str, enum.Enum):
    """Supported target architectures."""

    X64 = "x64"
    ARM64 = "arm64"
    X86 = "x86"


_PLATFORM_ALIASES: dict[str, str] = {
    "win": "windows",
    "win32": "windows",
    "darwin": "macos",
    "mac": "macos",
    "osx": "macos",
    "linuxstatic": "linux-static",
}

_ARCH_ALIASES: dict[str, str] = {
    "amd64": "x64",
    "x86_64": "x64",
    "aarch64": "arm64",
    "ia32": "x86",
    "i386": "x86",
    "i686": "x86",
}


@dataclass(frozen=True, slots=True)
class Target:
    """One packaging unit.

    ``platform`` and ``arch`` are enum members when recognized. Unrecognized
    values are kept as plain strings so :func:`validate` can report them.

    :ivar runtime_version: Version tag (e.g. ``node21`` or ``latest``).
    :ivar platform: Target platform.
    :ivar arch: Target architecture.
    """

    runtime_version: str
    platform: Platform | str
    arch: Arch | str

    @property
    def triple(self) -> str:
        """Render the target as ``<versionTag>-<platform>-<arch>``."""

        return f"{self.runtime_version}-{enum_value(self.platform)}-{enum_value(self.arch)}"

    def __str__(self) -> str:
        return self.triple


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of :func:`validate`.

    :ivar valid: ``True`` if the target is supported.
    :ivar reason: Human-readable failure reason (``None`` when valid).
    """

    valid: bool
    reason: str | None = None


def enum_value(v: enum.Enum | str) -> str:
    """Return the string value of an enum member, or the string itself."""

    if isinstance(v, enum.Enum):
        return str(v.value)
    return v


def normalize_platform(value: str) -> Platform | str:
    """Map a platform spelling to a :class:`Platform`.

    :param value: Platform string.
    :returns: Enum member, or the lowercased input if unknown.
    """

    v: str = value.strip().lower()
    v = _PLATFORM_ALIASES.get(v, v)
    try:
        return Platform(v)
    except ValueError:
        return v


def normalize_arch(value: str) -> Arch | str:
    """Map an architecture spelling to an :class:`Arch`.

    :param value: Architecture string.
    :returns: Enum member, or the lowercased input if unknown.
    """

    v: str = value.strip().lower()
    v = _ARCH_ALIASES.get(v, v)
    try:
        return Arch(v)
    except ValueError:
        return v


def parse_target(spec: str, *, default_version: str | None = None) -> Target:
    """Parse a target triple.

    The version component is optional when ``default_version`` is given
    (``linux-x64``). The platform component may itself contain a hyphen
    (``linux-static``).

    :param spec: Target triple string.
    :param default_version: Version tag used when the spec omits one.
    :returns: Parsed target.
    :raises ValidationError: If the spec is malformed.
    """

    parts: list[str] = [p for p in spec.strip().split("-") if len(p) > 0]
    if len(parts) < 2:
        raise ValidationError(
            f"Unrecognized target {spec!r}; expected '<node-version>-<platform>-<arch>'."
        )

    version: str
    rest: list[str]
    head: str = parts[0].lower()
    if head == LATEST_TAG or head.startswith("node") is True:
        version = head if head == LATEST_TAG else normalize_version_tag(head)
        rest = parts[1:]
    elif default_version is not None:
        version = normalize_version_tag(default_version)
        rest = parts
    else:
        raise ValidationError(
            f"Target {spec!r} has no version component (e.g. 'node21-{spec}')."
        )

    if len(rest) < 2:
        raise ValidationError(f"Target {spec!r} must name both a platform and an arch.")

    arch: Arch | str = normalize_arch(rest[-1])
    platform_: Platform | str = normalize_platform("-".join(rest[0:-1]))
    return Target(runtime_version=version, platform=platform_, arch=arch)


def validate(target: Target) -> ValidationResult:
    """Validate a target against the supported version, platform and arch sets.

    :param target: Target to check.
    :returns: Validation result.
    """

    info: CapabilityInfo = capability_of(target.runtime_version)
    if info.is_supported is False:
        return ValidationResult(
            valid=False,
            reason=(
                f"Node.js version {target.runtime_version} is not supported. "
                f"Supported versions: {MIN_SUPPORTED_MAJOR}-{MAX_SUPPORTED_MAJOR}"
            ),
        )

    if isinstance(target.platform, Platform) is False:
        allowed: str = ", ".join(p.value for p in Platform)
        return ValidationResult(
            valid=False,
            reason=f"Platform {target.platform} is not supported. Supported platforms: {allowed}",
        )

    if isinstance(target.arch, Arch) is False:
        allowed_arch: str = ", ".join(a.value for a in Arch)
        return ValidationResult(
            valid=False,
            reason=f"Architecture {target.arch} is not supported. Supported architectures: {allowed_arch}",
        )

    return ValidationResult(valid=True)


def host_target(runtime_version: str) -> Target:
    """Describe the machine we are running on as a :class:`Target`.

    Alpine and fully static Linux builds cannot be told apart from a glibc
    host here, so Linux hosts always report ``linux``.

    :param runtime_version: Version tag to attach.
    :returns: Host target.
    """

    platform_: Platform | str
    if sys.platform.startswith("win") is True:
        platform_ = Platform.WINDOWS
    elif sys.platform == "darwin":
        platform_ = Platform.MACOS
    elif sys.platform.startswith("linux") is True:
        platform_ = Platform.LINUX
    else:
        platform_ = sys.platform

    return Target(
        runtime_version=normalize_version_tag(runtime_version),
        platform=platform_,
        arch=normalize_arch(host_platform.machine()),
    )


def executable_suffix(platform_: Platform | str) -> str:
    """Return the executable file suffix for a platform (``.exe`` on Windows)."""

    if platform_ == Platform.WINDOWS:
        return ".exe"
    return ""
