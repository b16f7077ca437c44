"""Runtime capability model.

Everything here is a pure function of the static tables below:

- Which Node.js majors are supported at all (``MIN_SUPPORTED_MAJOR`` through
  ``MAX_SUPPORTED_MAJOR``).
- The ABI identifier of each major, from the Node.js ABI version registry.
- Whether (and how well) a major supports the single executable application
  (SEA) facility.

Nothing is cached; every call recomputes its answer from the tables.
"""

from dataclasses import dataclass
import re


MIN_SUPPORTED_MAJOR: int = 10
MAX_SUPPORTED_MAJOR: int = 24

# SEA landed as experimental in 19 and is treated as stable from 21.
NATIVE_INTRODUCED_MAJOR: int = 19
NATIVE_STABLE_MAJOR: int = 21

# Kept as separate constants so they can diverge independently.
ASSETS_MAJOR: int = 20
SNAPSHOT_MAJOR: int = 20
CODE_CACHE_MAJOR: int = 20

LATEST_TAG: str = "latest"

# Source: https://github.com/nodejs/node/blob/main/doc/abi_version_registry.json
ABI_REGISTRY: dict[int, str] = {
    14: "node0.12",
    46: "node4",
    47: "node5",
    48: "node6",
    51: "node7",
    57: "node8",
    59: "node9",
    64: "node10",
    67: "node11",
    72: "node12",
    79: "node13",
    83: "node14",
    88: "node15",
    93: "node16",
    102: "node17",
    108: "node18",
    111: "node19",
    115: "node20",
    120: "node21",
    127: "node22",
    131: "node23",
    137: "node24",
}

_VERSION_RE: re.Pattern[str] = re.compile(r"^(?:node|v)?(?P<maj>\d+)(?:\.\d+){0,2}$")
_ABI_RE: re.Pattern[str] = re.compile(r"^m?(?P<abi>\d+)$")


@dataclass(frozen=True, slots=True)
class CapabilityInfo:
    """What is known about one runtime version.

    :ivar version: Canonical version tag (e.g. ``node21``), or the input as given
        when it could not be parsed.
    :ivar abi: ABI identifier, ``0`` when unknown.
    :ivar supports_native: SEA is available (possibly experimental).
    :ivar stable_native: SEA is available and out of experimental status.
    :ivar is_supported: Version falls within the maintained range.
    """

    version: str
    abi: int
    supports_native: bool
    stable_native: bool
    is_supported: bool


@dataclass(frozen=True, slots=True)
class NativeCapabilities:
    """Native (SEA) features available for one runtime version.

    :ivar has_native: SEA packaging is possible at all.
    :ivar supports_assets: The SEA config accepts an ``assets`` mapping.
    :ivar supports_snapshot: ``useSnapshot`` is honored.
    :ivar supports_code_cache: ``useCodeCache`` is honored.
    :ivar requires_injection: The blob must be injected with postject.
    """

    has_native: bool
    supports_assets: bool
    supports_snapshot: bool
    supports_code_cache: bool
    requires_injection: bool


@dataclass(frozen=True, slots=True)
class RecommendedVersions:
    """Version recommendations for new projects.

    :ivar lts: Long-term-support majors.
    :ivar current: Newest supported major.
    :ivar native_ready: Majors with stable SEA support.
    """

    lts: tuple[str, ...]
    current: str
    native_ready: tuple[str, ...]


def parse_major(version: str) -> int | None:
    """Extract the major version number from a version string.

    Accepts ``node21``, ``21``, ``v21.7.3`` and ``21.7.3``. The ``latest``
    sentinel maps to :data:`MAX_SUPPORTED_MAJOR`.

    :param version: Version string.
    :returns: Major number, or ``None`` if the string is not a version.
    """

    v: str = version.strip().lower()
    if v == LATEST_TAG:
        return MAX_SUPPORTED_MAJOR
    m = _VERSION_RE.match(v)
    if m is None:
        return None
    return int(m.group("maj"))


def normalize_version_tag(version: str) -> str:
    """Return the canonical ``node<N>`` tag, or the input unchanged if unparsable.

    :param version: Version string.
    :returns: Canonical tag.
    """

    major: int | None = parse_major(version)
    if major is None:
        return version
    return f"node{major}"


def is_supported_major(major: int | None) -> bool:
    """Check a major number against the maintained inclusive range.

    :param major: Major version, or ``None``.
    :returns: ``True`` if supported.
    """

    if major is None:
        return False
    return MIN_SUPPORTED_MAJOR <= major <= MAX_SUPPORTED_MAJOR


def abi_of(version: str) -> int:
    """Look up the ABI identifier of a version.

    :param version: Version string.
    :returns: ABI number, ``0`` when the version is not in the registry.
    """

    tag: str = normalize_version_tag(version)
    for abi, name in ABI_REGISTRY.items():
        if name == tag:
            return abi
    return 0


def abi_to_version(abi: str | int) -> str | None:
    """Map an ABI identifier (``m115``, ``"115"`` or ``115``) to a version tag.

    :param abi: ABI identifier.
    :returns: Version tag, or ``None`` when unknown.
    """

    if isinstance(abi, int):
        return ABI_REGISTRY.get(abi)
    m = _ABI_RE.match(abi.strip().lower())
    if m is None:
        return None
    return ABI_REGISTRY.get(int(m.group("abi")))


def capability_of(version: str) -> CapabilityInfo:
    """Compute the :class:`CapabilityInfo` of a version.

    Unknown versions are reported as unsupported with every flag off.

    :param version: Version string.
    :returns: Capability info.
    """

    major: int | None = parse_major(version)
    if is_supported_major(major) is False:
        return CapabilityInfo(
            version=normalize_version_tag(version),
            abi=abi_of(version),
            supports_native=False,
            stable_native=False,
            is_supported=False,
        )

    assert major is not None
    return CapabilityInfo(
        version=f"node{major}",
        abi=abi_of(version),
        supports_native=major >= NATIVE_INTRODUCED_MAJOR,
        stable_native=major >= NATIVE_STABLE_MAJOR,
        is_supported=True,
    )


def native_capabilities_of(version: str) -> NativeCapabilities:
    """Compute the :class:`NativeCapabilities` of a version.

    :param version: Version string.
    :returns: Native capabilities.
    """

    info: CapabilityInfo = capability_of(version)
    if info.supports_native is False:
        return NativeCapabilities(
            has_native=False,
            supports_assets=False,
            supports_snapshot=False,
            supports_code_cache=False,
            requires_injection=False,
        )

    major: int | None = parse_major(info.version)
    assert major is not None
    return NativeCapabilities(
        has_native=True,
        supports_assets=major >= ASSETS_MAJOR,
        supports_snapshot=major >= SNAPSHOT_MAJOR,
        supports_code_cache=major >= CODE_CACHE_MAJOR,
        requires_injection=True,
    )


def is_valid_version_tag(tag: str) -> bool:
    """Check whether ``tag`` is ``latest`` or a supported ``node<N>`` tag.

    :param tag: Version tag from a target triple.
    :returns: ``True`` if valid.
    """

    if tag == LATEST_TAG:
        return True
    if tag.startswith("node") is False:
        return False
    return capability_of(tag).is_supported


def supported_versions() -> list[str]:
    """List every supported version tag, oldest first."""

    return [f"node{n}" for n in range(MIN_SUPPORTED_MAJOR, MAX_SUPPORTED_MAJOR + 1)]


def can_build_for_target(host_version: str, target_version: str) -> bool:
    """Check whether a host runtime can build for a target runtime.

    A host can always build for the same or an older major.

    :param host_version: Host runtime version (e.g. ``v21.7.3``).
    :param target_version: Target version tag.
    :returns: ``True`` if the host major is at least the target major.
    """

    host_major: int | None = parse_major(host_version)
    target_major: int | None = parse_major(target_version)
    if host_major is None or target_major is None:
        return False
    return host_major >= target_major


def recommended_versions() -> RecommendedVersions:
    """Recommend versions: even majors are LTS lines."""

    lts: list[str] = []
    native_ready: list[str] = []
    for n in range(MIN_SUPPORTED_MAJOR, MAX_SUPPORTED_MAJOR + 1):
        if n % 2 == 0 and n >= MAX_SUPPORTED_MAJOR - 6:
            lts.append(f"node{n}")
        if n >= NATIVE_STABLE_MAJOR:
            native_ready.append(f"node{n}")
    return RecommendedVersions(
        lts=tuple(lts),
        current=f"node{MAX_SUPPORTED_MAJOR}",
        native_ready=tuple(native_ready),
    )
