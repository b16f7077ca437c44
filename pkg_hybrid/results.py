"""Per-target build results shared by both packaging strategies."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Outcome of building one target.

    :ivar success: ``True`` if an executable was produced.
    :ivar output_path: Path of the produced executable (empty on failure).
    :ivar size_bytes: Size of the produced executable.
    :ivar build_time_ms: Wall-clock build time in milliseconds.
    :ivar warnings: Non-fatal problems.
    :ivar errors: Fatal problems (non-empty on failure).
    """

    success: bool
    output_path: str
    size_bytes: int
    build_time_ms: int
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()


def failed_result(
    message: str,
    *,
    build_time_ms: int = 0,
    warnings: list[str] | tuple[str, ...] = (),
) -> BuildResult:
    """Build a failed :class:`BuildResult` carrying one error message."""

    return BuildResult(
        success=False,
        output_path="",
        size_bytes=0,
        build_time_ms=build_time_ms,
        warnings=tuple(warnings),
        errors=(message,),
    )
