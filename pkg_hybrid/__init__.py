"""pkg-hybrid.

Package a Node.js application into standalone executables, choosing per target
between the runtime's native single-executable-application facility and the
legacy full-bundling packager.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
