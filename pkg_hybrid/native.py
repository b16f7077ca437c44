"""Native single executable application (SEA) builder.

This module assembles a standalone executable with the runtime's own SEA
facility:

- It writes a SEA config and has ``node --experimental-sea-config`` turn the
  entrypoint into a preparation blob.
- It copies a runtime binary (the host's, or one from the
  :class:`~pkg_hybrid.resolver.ExtendedVersionResolver` for other majors),
  strips its signature where needed and injects the blob with ``postject``.
- It optionally re-signs the result and moves it to the requested output.

Every :meth:`NativeAssembler.assemble` call works inside its own temporary
directory, which is removed whether the build succeeds or fails.
"""

from dataclasses import dataclass
import json
import logging
import os
import pathlib
import re
import shutil
import tempfile
import time
from typing import Any

from pkg_hybrid.capabilities import NativeCapabilities, native_capabilities_of, parse_major
from pkg_hybrid.errors import CapabilityError, PackagerError
from pkg_hybrid.resolver import ExtendedVersionResolver, ResolvedBinary
from pkg_hybrid.results import BuildResult, failed_result
from pkg_hybrid.target import Platform, Target, executable_suffix, host_target
from pkg_hybrid.tools import BestEffortOutcome, BestEffortResult, ToolResult, ToolRunner, run_best_effort, run_checked


SEA_CONFIG_FLAG: str = "--experimental-sea-config"
SEA_RESOURCE_NAME: str = "NODE_SEA_BLOB"
SEA_FUSE: str = "NODE_SEA_FUSE_fce680ab2cc467b6e072b8b5df1996b2"
SEA_MACHO_SEGMENT: str = "NODE_SEA"

CONFIG_FILENAME: str = "sea-config.json"
BLOB_FILENAME: str = "prep.blob"

_NODE_VERSION_RE: re.Pattern[str] = re.compile(r"v?(\d+)\.\d+\.\d+")


@dataclass(frozen=True, slots=True)
class NativeBuildOptions:
    """Inputs of one native build.

    :ivar entrypoint: Application entry script.
    :ivar output: Final executable path.
    :ivar target: Target to build for.
    :ivar assets: Asset paths to embed (missing paths are skipped).
    :ivar use_snapshot: Request a startup snapshot.
    :ivar use_code_cache: Request a code cache; ``None`` means on.
    :ivar sign_binary: Re-sign the executable after injection.
    """

    entrypoint: pathlib.Path
    output: pathlib.Path
    target: Target
    assets: tuple[pathlib.Path, ...] = ()
    use_snapshot: bool = False
    use_code_cache: bool | None = None
    sign_binary: bool = False


def convert_assets(assets: tuple[pathlib.Path, ...] | list[pathlib.Path], *, project_root: pathlib.Path) -> dict[str, str]:
    """Map asset paths to SEA asset keys.

    Keys are POSIX paths relative to ``project_root``; values are absolute
    source paths. Paths that do not exist, or that have no relative path from
    ``project_root`` (another drive on Windows), are skipped.

    :param assets: Declared asset paths.
    :param project_root: Directory keys are relative to.
    :returns: SEA ``assets`` mapping.
    """

    converted: dict[str, str] = {}
    for asset in assets:
        if asset.exists() is False:
            continue
        source: pathlib.Path = asset.resolve()
        try:
            relative: str = os.path.relpath(source, project_root.resolve())
        except ValueError:
            continue
        key: str = pathlib.Path(relative).as_posix()
        converted[key] = str(source)
    return converted


def build_sea_config(
    options: NativeBuildOptions,
    *,
    blob_path: pathlib.Path,
    caps: NativeCapabilities,
    project_root: pathlib.Path,
) -> dict[str, Any]:
    """Build the SEA configuration record for ``node --experimental-sea-config``.

    :param options: Build options.
    :param blob_path: Where the blob should be written.
    :param caps: Native capabilities of the target version.
    :param project_root: Directory asset keys are relative to.
    :returns: JSON-serializable config.
    """

    config: dict[str, Any] = {
        "main": str(options.entrypoint),
        "output": str(blob_path),
        "disableExperimentalSEAWarning": True,
        "useSnapshot": options.use_snapshot is True and caps.supports_snapshot is True,
        "useCodeCache": options.use_code_cache is not False and caps.supports_code_cache is True,
    }
    if caps.supports_assets is True and len(options.assets) > 0:
        config["assets"] = convert_assets(options.assets, project_root=project_root)
    return config


class NativeAssembler:
    """Build native single executables.

    :param runner: Tool runner for ``node``, ``npx``, ``codesign`` and ``signtool``.
    :param node_executable: Host runtime executable (name on ``PATH`` or path).
    :param resolver: Resolver for targets the host binary cannot serve (other
        major, platform or arch).
    :param work_root: Parent directory for per-build temp directories
        (defaults to the system temp directory).
    :param project_root: Directory asset keys are relative to (defaults to cwd).
    :param host: Host target; only its platform and arch are used (defaults to
        the running machine).
    :param logger: Logger for progress output.
    """

    def __init__(
        self,
        runner: ToolRunner,
        *,
        node_executable: str = "node",
        resolver: ExtendedVersionResolver | None = None,
        work_root: pathlib.Path | None = None,
        project_root: pathlib.Path | None = None,
        host: Target | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if logger is None:
            logger = logging.getLogger("pkg_hybrid")
        if host is None:
            host = host_target(node_executable)
        self._host: Target = host
        self._runner: ToolRunner = runner
        self._node: str = node_executable
        self._resolver: ExtendedVersionResolver | None = resolver
        self._work_root: pathlib.Path | None = work_root
        self._project_root: pathlib.Path | None = project_root
        self._logger: logging.Logger = logger

    def assemble(self, options: NativeBuildOptions) -> BuildResult:
        """Run the native build pipeline for one target.

        Failures are reported in the returned result rather than raised.

        :param options: Build options.
        :returns: Build result.
        """

        t0: float = time.perf_counter()
        warnings: list[str] = []
        triple: str = options.target.triple
        self._logger.info(f"building {triple} as a native single executable")

        if self._work_root is not None:
            self._work_root.mkdir(parents=True, exist_ok=True)

        try:
            with tempfile.TemporaryDirectory(prefix="pkg_hybrid_sea_", dir=self._work_root) as td:
                work_dir: pathlib.Path = pathlib.Path(td)

                caps: NativeCapabilities = self._check_capability(options.target)
                config_path, blob_path = self._write_config(options, work_dir=work_dir, caps=caps)
                self._generate_blob(config_path)
                self._logger.debug("preparation blob generated")

                binary_path: pathlib.Path = self._acquire_binary(options, work_dir=work_dir, warnings=warnings)
                self._logger.debug(f"runtime binary copied to {binary_path}")

                self._remove_signature(binary_path, options.target.platform, warnings=warnings)
                self._inject_blob(binary_path, blob_path, options.target.platform)
                self._logger.debug("blob injected into binary")

                if options.sign_binary is True:
                    self._sign_binary(binary_path, options.target.platform, warnings=warnings)

                final_path: pathlib.Path = self._relocate(binary_path, options.output)
        except (PackagerError, OSError) as e:
            elapsed_ms: int = int((time.perf_counter() - t0) * 1000)
            self._logger.error(f"native build failed for {triple}: {e}")
            return failed_result(str(e), build_time_ms=elapsed_ms, warnings=warnings)

        size: int = final_path.stat().st_size
        build_time_ms: int = int((time.perf_counter() - t0) * 1000)
        self._logger.info(
            f"native build of {triple} completed in {build_time_ms}ms "
            f"({size / (1024 * 1024):.1f} MiB)"
        )
        return BuildResult(
            success=True,
            output_path=str(final_path),
            size_bytes=size,
            build_time_ms=build_time_ms,
            warnings=tuple(warnings),
            errors=(),
        )

    def _check_capability(self, target: Target) -> NativeCapabilities:
        """Recheck native support for the target and the host runtime.

        :raises CapabilityError: If either lacks SEA support.
        """

        caps: NativeCapabilities = native_capabilities_of(target.runtime_version)
        if caps.has_native is False:
            raise CapabilityError(
                f"Node.js {target.runtime_version} does not support single executable applications"
            )

        help_result: ToolResult = self._runner.run(self._node, ["--help"])
        if SEA_CONFIG_FLAG not in help_result.stdout:
            raise CapabilityError(
                f"Host runtime {self._node} does not provide {SEA_CONFIG_FLAG}"
            )
        return caps

    def _write_config(
        self,
        options: NativeBuildOptions,
        *,
        work_dir: pathlib.Path,
        caps: NativeCapabilities,
    ) -> tuple[pathlib.Path, pathlib.Path]:
        """Write the SEA config into the work directory.

        :returns: ``(config_path, blob_path)``.
        """

        blob_path: pathlib.Path = work_dir / BLOB_FILENAME
        project_root: pathlib.Path = self._project_root if self._project_root is not None else pathlib.Path.cwd()
        config: dict[str, Any] = build_sea_config(
            options,
            blob_path=blob_path,
            caps=caps,
            project_root=project_root,
        )
        config_path: pathlib.Path = work_dir / CONFIG_FILENAME
        config_path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
        if self._logger.isEnabledFor(logging.DEBUG) is True:
            self._logger.debug(f"SEA config: {json.dumps(config)}")
        return config_path, blob_path

    def _generate_blob(self, config_path: pathlib.Path) -> None:
        """Run the runtime's blob preparation step.

        :raises ExternalToolError: On nonzero exit.
        """

        run_checked(
            self._runner,
            self._node,
            [SEA_CONFIG_FLAG, str(config_path)],
            summary="Failed to generate SEA blob",
        )

    def _host_major(self) -> int | None:
        result: ToolResult = run_checked(
            self._runner,
            self._node,
            ["--version"],
            summary="Failed to query host runtime version",
        )
        m = _NODE_VERSION_RE.search(result.stdout)
        if m is None:
            return None
        return int(m.group(1))

    def _host_executable(self) -> pathlib.Path:
        candidate: pathlib.Path = pathlib.Path(self._node)
        if candidate.is_file() is True:
            return candidate
        found: str | None = shutil.which(self._node)
        if found is None:
            raise CapabilityError(f"Host runtime {self._node} was not found on PATH")
        return pathlib.Path(found)

    def _acquire_binary(
        self,
        options: NativeBuildOptions,
        *,
        work_dir: pathlib.Path,
        warnings: list[str],
    ) -> pathlib.Path:
        """Copy a runtime binary into the work directory.

        The host binary is used only when the target matches the host major,
        platform and arch; anything else comes from the resolver.

        :returns: Path of the copy.
        :raises CapabilityError: If a non-host binary is needed and no resolver is set.
        """

        target: Target = options.target
        source: pathlib.Path
        same_major: bool = parse_major(target.runtime_version) == self._host_major()
        same_machine: bool = target.platform == self._host.platform and target.arch == self._host.arch
        if same_major is True and same_machine is True:
            source = self._host_executable()
        else:
            if self._resolver is None:
                raise CapabilityError(
                    f"Target {target.triple} needs a runtime binary other than the host's and no resolver is configured"
                )
            resolved: ResolvedBinary = self._resolver.fetch(target.runtime_version, target.platform, target.arch)
            warnings.extend(resolved.warnings)
            source = resolved.path

        binary_path: pathlib.Path = work_dir / f"{options.output.stem}{executable_suffix(target.platform)}"
        shutil.copyfile(source, binary_path)
        os.chmod(binary_path, 0o755)
        return binary_path

    def _remove_signature(
        self,
        binary_path: pathlib.Path,
        platform: Platform | str,
        *,
        warnings: list[str],
    ) -> None:
        """Strip the existing code signature before injection.

        Required on macOS; best-effort on Windows; skipped elsewhere.
        """

        if platform == Platform.MACOS:
            run_checked(
                self._runner,
                "codesign",
                ["--remove-signature", str(binary_path)],
                summary="Failed to remove code signature",
            )
        elif platform == Platform.WINDOWS:
            outcome: BestEffortResult = run_best_effort(
                self._runner,
                "signtool",
                ["remove", "/s", str(binary_path)],
            )
            if outcome.ok is False:
                warnings.append(_best_effort_warning("Signature removal", outcome))

    def _inject_blob(self, binary_path: pathlib.Path, blob_path: pathlib.Path, platform: Platform | str) -> None:
        """Inject the blob into the binary with postject.

        :raises ExternalToolError: On nonzero exit.
        """

        args: list[str] = [
            "postject",
            str(binary_path),
            SEA_RESOURCE_NAME,
            str(blob_path),
            "--sentinel-fuse",
            SEA_FUSE,
        ]
        if platform == Platform.MACOS:
            args.extend(["--macho-segment-name", SEA_MACHO_SEGMENT])
        run_checked(self._runner, "npx", args, summary="Failed to inject blob")

    def _sign_binary(
        self,
        binary_path: pathlib.Path,
        platform: Platform | str,
        *,
        warnings: list[str],
    ) -> None:
        outcome: BestEffortResult | None = None
        if platform == Platform.MACOS:
            outcome = run_best_effort(self._runner, "codesign", ["--sign", "-", str(binary_path)])
        elif platform == Platform.WINDOWS:
            outcome = run_best_effort(self._runner, "signtool", ["sign", "/fd", "SHA256", str(binary_path)])

        if outcome is not None and outcome.ok is False:
            warnings.append(_best_effort_warning("Signing", outcome))

    def _relocate(self, binary_path: pathlib.Path, output: pathlib.Path) -> pathlib.Path:
        output.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(binary_path), str(output))
        return output


def _best_effort_warning(step: str, outcome: BestEffortResult) -> str:
    if outcome.outcome == BestEffortOutcome.TOOL_ABSENT:
        return f"{step} skipped: {outcome.detail}"
    return f"{step} failed and was ignored: {outcome.detail}"
