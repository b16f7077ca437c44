"""External tool port.

Every external process the core starts (``node``, ``npx postject``,
``codesign``, ``signtool``, ``npx pkg``) goes through a :class:`ToolRunner`.
Tests substitute an in-process fake.
"""

from dataclasses import dataclass
import enum
import logging
import shutil
import subprocess
from typing import Protocol

from pkg_hybrid.errors import ExternalToolError, ToolNotFoundError


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Completed external process.

    :ivar exit_code: Process exit code.
    :ivar stdout: Captured standard output.
    :ivar stderr: Captured standard error.
    """

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ToolRunner(Protocol):
    """Runs an external command to completion."""

    def run(self, command: str, args: list[str]) -> ToolResult:
        """Run ``command`` with ``args``.

        :param command: Executable name or path.
        :param args: Arguments.
        :returns: Completed process result.
        :raises ToolNotFoundError: If ``command`` cannot be found.
        """
        ...


class SubprocessToolRunner:
    """:class:`ToolRunner` backed by :func:`subprocess.run`."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        if logger is None:
            logger = logging.getLogger("pkg_hybrid")
        self._logger: logging.Logger = logger

    def run(self, command: str, args: list[str]) -> ToolResult:
        # shutil.which also resolves npx.cmd and friends on Windows.
        exe: str | None = shutil.which(command)
        if exe is None:
            raise ToolNotFoundError(command)

        cmd: list[str] = [exe, *args]
        if self._logger.isEnabledFor(logging.DEBUG) is True:
            self._logger.debug(f"running: {' '.join(cmd)}")

        try:
            proc = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(command) from e

        return ToolResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


def run_checked(runner: ToolRunner, command: str, args: list[str], *, summary: str) -> ToolResult:
    """Run a tool and turn a nonzero exit into :class:`ExternalToolError`.

    :param runner: Tool runner.
    :param command: Executable.
    :param args: Arguments.
    :param summary: Short description used as the error message prefix.
    :returns: Successful result.
    :raises ExternalToolError: On nonzero exit.
    :raises ToolNotFoundError: If the tool is absent.
    """

    result: ToolResult = runner.run(command, args)
    if result.ok is False:
        raise ExternalToolError(
            summary,
            command=" ".join([command, *args]),
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
    return result


class BestEffortOutcome(str, enum.Enum):
    """Outcome of a step whose failure is tolerated."""

    OK = "ok"
    TOOL_ABSENT = "tool_absent"
    TOOL_FAILED = "tool_failed"


@dataclass(frozen=True, slots=True)
class BestEffortResult:
    """Result of :func:`run_best_effort`.

    :ivar outcome: What happened.
    :ivar detail: Diagnostic text for failures (empty on success).
    """

    outcome: BestEffortOutcome
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == BestEffortOutcome.OK


def run_best_effort(runner: ToolRunner, command: str, args: list[str]) -> BestEffortResult:
    """Run a tool whose absence or failure must not fail the build.

    :param runner: Tool runner.
    :param command: Executable.
    :param args: Arguments.
    :returns: Outcome distinguishing a missing tool from a failing one.
    """

    try:
        result: ToolResult = runner.run(command, args)
    except ToolNotFoundError as e:
        return BestEffortResult(outcome=BestEffortOutcome.TOOL_ABSENT, detail=str(e))

    if result.ok is False:
        detail: str = result.stderr.strip() or f"exit={result.exit_code}"
        return BestEffortResult(outcome=BestEffortOutcome.TOOL_FAILED, detail=detail)
    return BestEffortResult(outcome=BestEffortOutcome.OK)
