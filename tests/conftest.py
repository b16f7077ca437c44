from __future__ import annotations

import json
import pathlib

import pytest

from pkg_hybrid.errors import ToolNotFoundError
from pkg_hybrid.tools import ToolResult


class FakeToolRunner:
    """In-process stand-in for the external tools.

    ``failures`` maps a command name or argument (e.g. ``"postject"``,
    ``"--experimental-sea-config"``, ``"codesign"``) to the result to return.
    """

    def __init__(
        self,
        *,
        node_version: str = "v21.7.3",
        sea_flag: bool = True,
        failures: dict[str, ToolResult] | None = None,
        missing: tuple[str, ...] = (),
    ) -> None:
        self.node_version = node_version
        self.sea_flag = sea_flag
        self.failures = failures or {}
        self.missing = set(missing)
        self.calls: list[tuple[str, list[str]]] = []
        self.sea_configs: list[dict] = []

    def run(self, command: str, args: list[str]) -> ToolResult:
        self.calls.append((command, list(args)))
        if command in self.missing:
            raise ToolNotFoundError(command)
        for key, result in self.failures.items():
            if key == command or key in args:
                return result

        if args == ["--help"]:
            text = "Usage: node [options]\n"
            if self.sea_flag:
                text += "  --experimental-sea-config   Generate a blob for SEA\n"
            return ToolResult(exit_code=0, stdout=text, stderr="")
        if args == ["--version"]:
            return ToolResult(exit_code=0, stdout=self.node_version + "\n", stderr="")
        if len(args) == 2 and args[0] == "--experimental-sea-config":
            config = json.loads(pathlib.Path(args[1]).read_text(encoding="utf-8"))
            self.sea_configs.append(config)
            pathlib.Path(config["output"]).write_bytes(b"blob")
            return ToolResult(exit_code=0, stdout="Wrote single executable preparation blob\n", stderr="")
        return ToolResult(exit_code=0, stdout="", stderr="")

    def commands(self) -> list[str]:
        out: list[str] = []
        for command, args in self.calls:
            name = pathlib.Path(command).name
            if name == "npx":
                out.append(args[0])
            else:
                out.append(f"{name} {args[0]}")
        return out


@pytest.fixture
def fake_node(tmp_path: pathlib.Path) -> pathlib.Path:
    node = tmp_path / "bin" / "node"
    node.parent.mkdir(parents=True)
    node.write_bytes(b"fake-node-binary")
    return node


@pytest.fixture
def work_root(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "work"
