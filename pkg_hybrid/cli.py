"""Command line interface for pkg-hybrid."""

import argparse
import logging
import os
import pathlib
import sys

from pkg_hybrid.capabilities import (
    CapabilityInfo,
    NativeCapabilities,
    RecommendedVersions,
    capability_of,
    native_capabilities_of,
    normalize_version_tag,
    recommended_versions,
)
from pkg_hybrid.errors import PackagerError, ToolNotFoundError, ValidationError
from pkg_hybrid.legacy import PkgCli
from pkg_hybrid.native import NativeAssembler
from pkg_hybrid.orchestrator import HybridBuildOptions, HybridBuildResult, HybridOrchestrator
from pkg_hybrid.resolver import ExtendedVersionResolver, PkgFetchCli
from pkg_hybrid.strategy import BuildDecision, BuildMode
from pkg_hybrid.target import Target, host_target, parse_target
from pkg_hybrid.tools import SubprocessToolRunner, ToolResult, ToolRunner


LOG_PREFIX: str = "pkg-hybrid"


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the pkg-hybrid logger.

    Every line is prefixed with the program name. With ``-vv`` the module and
    level of each record are shown as well.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    fmt: str = f"{LOG_PREFIX}: %(message)s"
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG
        if verbose >= 2:
            fmt = f"{LOG_PREFIX}: %(levelname)s %(module)s: %(message)s"

    logger: logging.Logger = logging.getLogger("pkg_hybrid")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def resolve_cache_dir(cache_dir: pathlib.Path | None) -> pathlib.Path:
    """Resolve the runtime binary cache directory.

    Defaults to ``PKG_CACHE_PATH`` when set, else ``~/.pkg-cache`` (the
    directory ``pkg-fetch`` uses).

    :param cache_dir: Optional explicit override.
    :returns: Cache directory.
    """

    if cache_dir is not None:
        return cache_dir
    env_value: str | None = os.environ.get("PKG_CACHE_PATH")
    if env_value is not None and len(env_value) > 0:
        return pathlib.Path(env_value)
    return pathlib.Path.home() / ".pkg-cache"


def _host_runtime_version(runner: ToolRunner, node: str) -> str | None:
    try:
        result: ToolResult = runner.run(node, ["--version"])
    except ToolNotFoundError:
        return None
    if result.ok is False:
        return None
    return result.stdout.strip()


def _resolve_targets(specs: list[str], *, default_version: str | None, host: Target) -> tuple[Target, ...]:
    """Turn ``--target`` values into targets; no values means the host.

    :param specs: Target triples from the command line.
    :param default_version: ``--node-version``, else the host runtime version, else ``None``.
    :param host: Host target (only platform and arch are used).
    :raises ValidationError: If a version is needed but the host runtime was not found.
    """

    if len(specs) == 0:
        if default_version is None:
            raise ValidationError("Host Node.js not found; pass --node-version or a --target with a version")
        return (Target(runtime_version=normalize_version_tag(default_version), platform=host.platform, arch=host.arch),)
    return tuple(parse_target(s, default_version=default_version) for s in specs)


def _add_common_build_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("entry", type=pathlib.Path, help="Application entry script.")
    p.add_argument(
        "-t",
        "--target",
        action="append",
        default=[],
        help="Target triple (e.g. node21-linux-x64). Repeat for several. Defaults to the host.",
    )
    p.add_argument(
        "--node-version",
        type=str,
        default=None,
        help="Node.js version for targets that omit one (e.g. node21).",
    )
    p.add_argument(
        "--asset",
        action="append",
        type=pathlib.Path,
        default=[],
        help="Asset path to embed. Repeat for several.",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--native", action="store_true", help="Force native single executable builds.")
    mode.add_argument("--legacy", action="store_true", help="Force the legacy packager.")
    p.add_argument("--cross-compile", action="store_true", help="Treat every target as cross-compiled.")
    p.add_argument(
        "--complex-requires",
        action="store_true",
        help="The app loads modules dynamically (forces the legacy packager).",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="Enable verbose logging.")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Reduce logging.")


def main(argv: list[str] | None = None) -> int:
    """Run the pkg-hybrid CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="pkg-hybrid",
        description="Package a Node.js app into standalone executables (native SEA or legacy pkg).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser("build", help="Build executables for one or more targets.")
    _add_common_build_args(p_build)
    p_build.add_argument("-o", "--output", type=pathlib.Path, required=True, help="Output executable path.")
    p_build.add_argument("--snapshot", action="store_true", help="Enable the startup snapshot (native).")
    p_build.add_argument("--no-code-cache", action="store_true", help="Disable the code cache (native).")
    p_build.add_argument("--sign", action="store_true", help="Re-sign native executables (macOS/Windows).")
    p_build.add_argument("--cache-dir", type=pathlib.Path, default=None, help="Runtime binary cache directory.")
    p_build.add_argument("--node", type=str, default="node", help="Host Node.js executable.")

    p_plan = subparsers.add_parser("plan", help="Show the strategy chosen for each target.")
    _add_common_build_args(p_plan)
    p_plan.add_argument("--node", type=str, default="node", help="Host Node.js executable.")

    p_info = subparsers.add_parser("info", help="Show what a Node.js version supports.")
    p_info.add_argument("version", type=str, help="Version tag (e.g. node21, 21, latest).")

    ns = parser.parse_args(argv)

    if ns.command == "info":
        _print_info(ns.version)
        return 0

    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
    runner: ToolRunner = SubprocessToolRunner(logger=logger)
    host_version: str | None = _host_runtime_version(runner, ns.node)
    if host_version is None:
        logger.warning(f"host Node.js not found: {ns.node}")
    host: Target = host_target(host_version if host_version is not None else "node")
    default_version: str | None = ns.node_version if ns.node_version is not None else host_version
    forced: BuildMode | None = None
    if ns.native is True:
        forced = BuildMode.NATIVE
    elif ns.legacy is True:
        forced = BuildMode.LEGACY

    try:
        targets: tuple[Target, ...] = _resolve_targets(ns.target, default_version=default_version, host=host)
    except PackagerError as e:
        logger.error(str(e))
        return 2

    output: pathlib.Path = ns.output if ns.command == "build" else pathlib.Path(ns.entry.stem)
    options: HybridBuildOptions = HybridBuildOptions(
        entrypoint=ns.entry.resolve(),
        output=output,
        targets=targets,
        assets=tuple(ns.asset),
        use_snapshot=getattr(ns, "snapshot", False),
        use_code_cache=False if getattr(ns, "no_code_cache", False) is True else None,
        forced_mode=forced,
        cross_compile=ns.cross_compile,
        has_complex_dynamic_loading=ns.complex_requires,
        sign_binary=getattr(ns, "sign", False),
    )

    if ns.command == "plan":
        orchestrator_plan: HybridOrchestrator = HybridOrchestrator(
            NativeAssembler(runner, node_executable=ns.node, host=host, logger=logger),
            PkgCli(runner, logger=logger),
            host=host,
            logger=logger,
        )
        decisions: list[BuildDecision] = orchestrator_plan.plan(options)
        for d in decisions:
            print(f"{d.target.triple}: {d.mode.value} ({d.reason})")
        return 0

    if ns.command == "build":
        cache_dir: pathlib.Path = resolve_cache_dir(ns.cache_dir)
        try:
            resolver: ExtendedVersionResolver = ExtendedVersionResolver(
                cache_dir,
                legacy_fetcher=PkgFetchCli(runner, cache_dir),
                logger=logger,
            )
        except PackagerError as e:
            logger.error(str(e))
            return 2

        orchestrator: HybridOrchestrator = HybridOrchestrator(
            NativeAssembler(runner, node_executable=ns.node, resolver=resolver, host=host, logger=logger),
            PkgCli(runner, logger=logger),
            host=host,
            logger=logger,
        )
        result: HybridBuildResult = orchestrator.build(options)
        for outcome in result.results:
            status: str = "ok" if outcome.result.success is True else "FAILED"
            print(f"{outcome.target.triple}: {outcome.mode.value} {status} {outcome.output_path}")
        for w in result.warnings:
            logger.warning(f"warning: {w}")
        for e in result.errors:
            logger.error(f"error: {e}")
        return 0 if result.success is True else 1

    raise AssertionError(f"Unhandled command: {ns.command}")


def _print_info(version: str) -> None:
    info: CapabilityInfo = capability_of(version)
    caps: NativeCapabilities = native_capabilities_of(version)
    rec: RecommendedVersions = recommended_versions()
    print(f"version:          {info.version}")
    print(f"supported:        {info.is_supported}")
    print(f"abi:              {info.abi}")
    print(f"native:           {info.supports_native} (stable: {info.stable_native})")
    print(f"assets:           {caps.supports_assets}")
    print(f"snapshot:         {caps.supports_snapshot}")
    print(f"code cache:       {caps.supports_code_cache}")
    print(f"recommended LTS:  {', '.join(rec.lts)}")
    print(f"native-ready:     {', '.join(rec.native_ready)}")


if __name__ == "__main__":
    raise SystemExit(main())
