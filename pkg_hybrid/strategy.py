"""Build strategy decisions.

:func:`decide` picks ``native`` (SEA) or ``legacy`` (pkg) for one target. It is
a pure function of its arguments and the capability tables, so calling it
twice with the same arguments yields equal decisions.
"""

from dataclasses import dataclass
import enum

from pkg_hybrid.capabilities import (
    CapabilityInfo,
    NativeCapabilities,
    capability_of,
    native_capabilities_of,
)
from pkg_hybrid.target import Target, ValidationResult, validate


class BuildMode(str, enum.Enum):
    """The two packaging strategies."""

    NATIVE = "native"
    LEGACY = "legacy"


class Verdict(str, enum.Enum):
    """Intermediate recommendation computed from project traits."""

    NATIVE = "native"
    LEGACY = "legacy"
    BLENDED = "blended"


@dataclass(frozen=True, slots=True)
class ProjectTraits:
    """Project characteristics that influence the strategy.

    :ivar cross_compile: Building for a platform/arch other than the host.
    :ivar has_complex_dynamic_loading: The app resolves modules dynamically.
    :ivar has_assets: The app declares assets.
    """

    cross_compile: bool = False
    has_complex_dynamic_loading: bool = False
    has_assets: bool = False


@dataclass(frozen=True, slots=True)
class BuildDecision:
    """Strategy chosen for one target.

    :ivar target: The target.
    :ivar mode: Chosen build mode.
    :ivar reason: Human-readable justification.
    :ivar can_use_native: Native packaging is possible for this version.
    :ivar should_use_native: The final decision is native.
    """

    target: Target
    mode: BuildMode
    reason: str
    can_use_native: bool
    should_use_native: bool


@dataclass(frozen=True, slots=True)
class Recommendations:
    """Summary of decisions over a set of targets.

    :ivar can_use_native: Number of targets where native is possible.
    :ivar should_use_native: Number of targets decided native.
    :ivar recommendations: Human-readable advice.
    """

    can_use_native: int
    should_use_native: int
    recommendations: tuple[str, ...]


def strategy_verdict(version: str, traits: ProjectTraits) -> Verdict:
    """Recommend a strategy for a version from the project traits alone.

    :param version: Runtime version tag.
    :param traits: Project traits.
    :returns: Verdict.
    """

    info: CapabilityInfo = capability_of(version)
    if info.is_supported is False:
        return Verdict.LEGACY
    # SEA cannot cross-compile and has no dynamic module resolution.
    if traits.cross_compile is True:
        return Verdict.LEGACY
    if traits.has_complex_dynamic_loading is True:
        return Verdict.LEGACY
    if info.stable_native is True:
        return Verdict.NATIVE
    if info.supports_native is True:
        return Verdict.BLENDED
    return Verdict.LEGACY


def decide(
    target: Target,
    traits: ProjectTraits,
    forced_mode: BuildMode | None = None,
) -> BuildDecision:
    """Decide how to build one target.

    Rules, first match wins: validation failure, forced mode, missing native
    support, then the :func:`strategy_verdict`.

    :param target: Target to decide for.
    :param traits: Project traits.
    :param forced_mode: Mode forced by the user, or ``None`` for automatic.
    :returns: Build decision.
    """

    validation: ValidationResult = validate(target)
    if validation.valid is False:
        return BuildDecision(
            target=target,
            mode=BuildMode.LEGACY,
            reason=f"Target validation failed: {validation.reason}",
            can_use_native=False,
            should_use_native=False,
        )

    caps: NativeCapabilities = native_capabilities_of(target.runtime_version)

    if forced_mode is not None:
        return BuildDecision(
            target=target,
            mode=forced_mode,
            reason=f"User forced {forced_mode.value} mode",
            can_use_native=caps.has_native,
            should_use_native=forced_mode == BuildMode.NATIVE and caps.has_native is True,
        )

    if caps.has_native is False:
        return BuildDecision(
            target=target,
            mode=BuildMode.LEGACY,
            reason=f"Node.js {target.runtime_version} does not support single executable applications",
            can_use_native=False,
            should_use_native=False,
        )

    verdict: Verdict = strategy_verdict(target.runtime_version, traits)
    mode: BuildMode = BuildMode.LEGACY
    reason: str
    match verdict:
        case Verdict.NATIVE:
            mode = BuildMode.NATIVE
            reason = "Optimal for simple projects with stable single executable support"
        case Verdict.LEGACY:
            if traits.cross_compile is True:
                reason = "Cross-compilation requires the legacy packager"
            elif traits.has_complex_dynamic_loading is True:
                reason = "Dynamic module loading requires the legacy packager"
            else:
                reason = "Legacy packager is the default for this project"
        case Verdict.BLENDED:
            if capability_of(target.runtime_version).stable_native is True:
                mode = BuildMode.NATIVE
                reason = "Using native single executable for better performance (blended mode)"
            else:
                reason = (
                    f"Single executable support in {target.runtime_version} is pre-stability; "
                    "using legacy packager for reliability (blended mode)"
                )

    return BuildDecision(
        target=target,
        mode=mode,
        reason=reason,
        can_use_native=True,
        should_use_native=mode == BuildMode.NATIVE,
    )


def recommend(targets: list[Target], traits: ProjectTraits) -> Recommendations:
    """Summarize automatic decisions for a set of targets.

    :param targets: Targets to evaluate.
    :param traits: Project traits.
    :returns: Counts and advice.
    """

    decisions: list[BuildDecision] = [decide(t, traits) for t in targets]
    can_use: int = sum(1 for d in decisions if d.can_use_native is True)
    should_use: int = sum(1 for d in decisions if d.should_use_native is True)

    advice: list[str] = []
    if should_use > 0:
        advice.append(
            f"{should_use} targets can benefit from native single executables for faster builds and smaller outputs"
        )
    if can_use < len(targets):
        advice.append(
            f"{len(targets) - can_use} targets require the legacy packager "
            "(older Node.js versions or unsupported targets)"
        )
    if len(targets) > 0 and should_use == len(targets):
        advice.append("All targets can use native single executables; consider --native")

    return Recommendations(
        can_use_native=can_use,
        should_use_native=should_use,
        recommendations=tuple(advice),
    )
