"""Hybrid build orchestration.

Builds every requested target in declaration order, choosing a strategy per
target with :func:`~pkg_hybrid.strategy.decide` and dispatching to the native
assembler or the legacy packager. One target's failure never stops the batch.
"""

from dataclasses import dataclass
import logging
import pathlib
import time
from typing import Protocol

from pkg_hybrid.errors import PackagerError
from pkg_hybrid.legacy import LegacyPackager
from pkg_hybrid.native import NativeBuildOptions
from pkg_hybrid.results import BuildResult, failed_result
from pkg_hybrid.strategy import BuildDecision, BuildMode, ProjectTraits, decide
from pkg_hybrid.target import Target, executable_suffix


class NativeBuilder(Protocol):
    """Anything that can assemble a native executable."""

    def assemble(self, options: NativeBuildOptions) -> BuildResult: ...


@dataclass(frozen=True, slots=True)
class HybridBuildOptions:
    """Inputs of a multi-target build.

    :ivar entrypoint: Application entry script.
    :ivar output: Output path (suffixed per target when several are built).
    :ivar targets: Targets in build order.
    :ivar assets: Asset paths.
    :ivar use_snapshot: Request a startup snapshot for native builds.
    :ivar use_code_cache: Request a code cache for native builds (``None`` means on).
    :ivar forced_mode: Force every target to one mode; ``None`` decides automatically.
    :ivar cross_compile: Treat every target as cross-compiled.
    :ivar has_complex_dynamic_loading: The app resolves modules dynamically.
    :ivar sign_binary: Re-sign native executables.
    """

    entrypoint: pathlib.Path
    output: pathlib.Path
    targets: tuple[Target, ...]
    assets: tuple[pathlib.Path, ...] = ()
    use_snapshot: bool = False
    use_code_cache: bool | None = None
    forced_mode: BuildMode | None = None
    cross_compile: bool = False
    has_complex_dynamic_loading: bool = False
    sign_binary: bool = False


@dataclass(frozen=True, slots=True)
class TargetOutcome:
    """One row of a :class:`HybridBuildResult`.

    :ivar target: The target.
    :ivar mode: Strategy used.
    :ivar result: Build result.
    :ivar output_path: Produced (or intended) executable path.
    :ivar reason: Why the strategy was chosen.
    """

    target: Target
    mode: BuildMode
    result: BuildResult
    output_path: str
    reason: str


@dataclass(frozen=True, slots=True)
class HybridBuildResult:
    """Aggregate outcome of a multi-target build."""

    success: bool
    results: tuple[TargetOutcome, ...]
    total_time_ms: int
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()


def target_output_path(target: Target, base_output: pathlib.Path, *, multiple: bool) -> pathlib.Path:
    """Compute the output path of one target.

    A single target writes to ``base_output`` (plus ``.exe`` for Windows when
    missing). Several targets write ``<stem>-<version>-<platform>-<arch>``
    siblings.

    :param target: The target.
    :param base_output: Output path requested by the user.
    :param multiple: Whether more than one target is being built.
    :returns: Output path.
    """

    suffix: str = executable_suffix(target.platform)
    if multiple is False:
        if len(suffix) > 0 and base_output.suffix.lower() != suffix:
            return base_output.with_name(base_output.name + suffix)
        return base_output
    return base_output.parent / f"{base_output.stem}-{target.triple}{suffix}"


class HybridOrchestrator:
    """Build executables for many targets with the best strategy for each.

    :param native_builder: Native pipeline (usually a
        :class:`~pkg_hybrid.native.NativeAssembler`).
    :param legacy_packager: Legacy packager.
    :param host: Host target; targets on another platform/arch count as
        cross-compiled.
    :param logger: Logger for progress output.
    """

    def __init__(
        self,
        native_builder: NativeBuilder,
        legacy_packager: LegacyPackager,
        *,
        host: Target | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if logger is None:
            logger = logging.getLogger("pkg_hybrid")
        self._native: NativeBuilder = native_builder
        self._legacy: LegacyPackager = legacy_packager
        self._host: Target | None = host
        self._logger: logging.Logger = logger

    def traits_for(self, target: Target, options: HybridBuildOptions) -> ProjectTraits:
        """Project traits of ``options`` as seen from one target."""

        cross: bool = options.cross_compile
        if self._host is not None:
            if target.platform != self._host.platform or target.arch != self._host.arch:
                cross = True
        return ProjectTraits(
            cross_compile=cross,
            has_complex_dynamic_loading=options.has_complex_dynamic_loading,
            has_assets=len(options.assets) > 0,
        )

    def plan(self, options: HybridBuildOptions) -> list[BuildDecision]:
        """Decide a strategy for every target without building anything."""

        return [decide(t, self.traits_for(t, options), options.forced_mode) for t in options.targets]

    def build(self, options: HybridBuildOptions) -> HybridBuildResult:
        """Build every target.

        :param options: Build options.
        :returns: Aggregate result with one row per target.
        """

        t0: float = time.perf_counter()
        warnings: list[str] = []
        errors: list[str] = []
        outcomes: list[TargetOutcome] = []

        self._logger.info("starting hybrid build")
        decisions: list[BuildDecision] = self.plan(options)
        self._log_strategy_summary(decisions)

        multiple: bool = len(decisions) > 1
        for decision in decisions:
            triple: str = decision.target.triple
            output: pathlib.Path = target_output_path(decision.target, options.output, multiple=multiple)
            try:
                result: BuildResult = self._dispatch(decision, options, output)
            except (PackagerError, OSError) as e:
                result = failed_result(str(e))
            except Exception as e:
                # Any failure is confined to this target's row.
                self._logger.exception(f"{triple}: unexpected error from the {decision.mode.value} strategy")
                result = failed_result(f"{type(e).__name__}: {e}")

            outcomes.append(
                TargetOutcome(
                    target=decision.target,
                    mode=decision.mode,
                    result=result,
                    output_path=result.output_path if result.success is True else str(output),
                    reason=decision.reason,
                )
            )
            warnings.extend(f"{triple}: {w}" for w in result.warnings)
            if result.success is True:
                self._logger.info(f"{triple} built with {decision.mode.value}")
            else:
                self._logger.error(f"{triple} failed")
                errors.extend(f"{triple}: {msg}" for msg in result.errors)

        total_ms: int = int((time.perf_counter() - t0) * 1000)
        succeeded: int = sum(1 for o in outcomes if o.result.success is True)
        self._logger.info(
            f"build completed: {succeeded}/{len(outcomes)} targets successful in {total_ms}ms"
        )
        return HybridBuildResult(
            success=succeeded == len(outcomes),
            results=tuple(outcomes),
            total_time_ms=total_ms,
            warnings=tuple(warnings),
            errors=tuple(errors),
        )

    def _dispatch(self, decision: BuildDecision, options: HybridBuildOptions, output: pathlib.Path) -> BuildResult:
        match decision.mode:
            case BuildMode.NATIVE:
                native_options: NativeBuildOptions = NativeBuildOptions(
                    entrypoint=options.entrypoint,
                    output=output,
                    target=decision.target,
                    assets=options.assets,
                    use_snapshot=options.use_snapshot,
                    use_code_cache=options.use_code_cache,
                    sign_binary=options.sign_binary,
                )
                return self._native.assemble(native_options)
            case BuildMode.LEGACY:
                return self._legacy.build(options.entrypoint, output, decision.target, options.assets)
        raise AssertionError(f"Unhandled build mode: {decision.mode}")

    def _log_strategy_summary(self, decisions: list[BuildDecision]) -> None:
        native_count: int = sum(1 for d in decisions if d.mode == BuildMode.NATIVE)
        legacy_count: int = sum(1 for d in decisions if d.mode == BuildMode.LEGACY)
        self._logger.info(f"build strategy: {native_count} native, {legacy_count} legacy")
        for d in decisions:
            self._logger.debug(f"{d.target.triple}: {d.mode.value} ({d.reason})")
