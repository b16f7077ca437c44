"""Error taxonomy shared by the decision engine, pipeline and resolver."""


class PackagerError(RuntimeError):
    """Base class for every error raised by pkg-hybrid."""


class ValidationError(PackagerError, ValueError):
    """Raised when a target triple or target value is not supported."""


class CapabilityError(PackagerError):
    """Raised when native packaging is requested but unavailable for a version."""


class ToolNotFoundError(PackagerError):
    """Raised when an external tool is not installed or not on ``PATH``."""

    def __init__(self, command: str) -> None:
        super().__init__(f"External tool not found: {command}")
        self.command: str = command


class ExternalToolError(PackagerError):
    """Raised when an external tool exits with a nonzero status.

    :ivar command: Command that was run.
    :ivar exit_code: Process exit code.
    :ivar stderr: Captured standard error text.
    """

    def __init__(self, summary: str, *, command: str, exit_code: int, stderr: str) -> None:
        detail: str = stderr.strip()
        message: str = f"{summary} (exit={exit_code})"
        if len(detail) > 0:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.command: str = command
        self.exit_code: int = exit_code
        self.stderr: str = stderr


class FallbackExhausted(PackagerError):
    """Raised when an extended runtime version has no fallback entry.

    This indicates an inconsistent version table rather than a user error.
    """
