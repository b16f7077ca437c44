"""Legacy packager contract and the ``pkg`` command line adapter.

The legacy strategy bundles the whole application with a copy of the runtime.
It is treated as an opaque collaborator: anything satisfying
:class:`LegacyPackager` can be plugged into the orchestrator.
"""

import json
import logging
import pathlib
import tempfile
import time
from typing import Protocol

from pkg_hybrid.errors import PackagerError
from pkg_hybrid.resolver import pkg_platform_name
from pkg_hybrid.results import BuildResult, failed_result
from pkg_hybrid.target import Target, enum_value
from pkg_hybrid.tools import ToolRunner, run_checked


class LegacyPackager(Protocol):
    """Full-bundling packager."""

    def build(
        self,
        entrypoint: pathlib.Path,
        output: pathlib.Path,
        target: Target,
        assets: tuple[pathlib.Path, ...],
    ) -> BuildResult:
        """Bundle ``entrypoint`` for ``target`` into ``output``."""
        ...


def pkg_target_name(target: Target) -> str:
    """Spell a target the way ``pkg --targets`` expects it (``node18-win-x64``)."""

    return f"{target.runtime_version}-{pkg_platform_name(target.platform)}-{enum_value(target.arch)}"


class PkgCli:
    """:class:`LegacyPackager` that runs ``npx pkg``.

    Assets are passed through a temporary ``--config`` file holding a
    ``pkg.assets`` list.

    :param runner: Tool runner.
    :param logger: Logger for progress output.
    """

    def __init__(self, runner: ToolRunner, *, logger: logging.Logger | None = None) -> None:
        if logger is None:
            logger = logging.getLogger("pkg_hybrid")
        self._runner: ToolRunner = runner
        self._logger: logging.Logger = logger

    def build(
        self,
        entrypoint: pathlib.Path,
        output: pathlib.Path,
        target: Target,
        assets: tuple[pathlib.Path, ...],
    ) -> BuildResult:
        t0: float = time.perf_counter()
        pkg_target: str = pkg_target_name(target)
        self._logger.info(f"building {target.triple} with the legacy packager")

        output.parent.mkdir(parents=True, exist_ok=True)
        try:
            with tempfile.TemporaryDirectory(prefix="pkg_hybrid_pkg_") as td:
                args: list[str] = ["pkg", str(entrypoint), "--targets", pkg_target, "--output", str(output)]
                if len(assets) > 0:
                    config_path: pathlib.Path = pathlib.Path(td) / "pkg-config.json"
                    config: dict[str, object] = {
                        "name": entrypoint.stem,
                        "bin": str(entrypoint),
                        "pkg": {"assets": [str(a) for a in assets]},
                    }
                    config_path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
                    args.extend(["--config", str(config_path)])
                run_checked(self._runner, "npx", args, summary=f"pkg failed for {pkg_target}")
        except (PackagerError, OSError) as e:
            elapsed: int = int((time.perf_counter() - t0) * 1000)
            return failed_result(str(e), build_time_ms=elapsed)

        build_time_ms: int = int((time.perf_counter() - t0) * 1000)
        if output.is_file() is False:
            return failed_result(
                f"pkg reported success but {output} was not produced",
                build_time_ms=build_time_ms,
            )
        return BuildResult(
            success=True,
            output_path=str(output),
            size_bytes=output.stat().st_size,
            build_time_ms=build_time_ms,
        )
