"""Exceptions raised while generating, compiling and loading types."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from typeforge.compiler import Diagnostic

__all__ = [
    "CompilationError",
    "ExportError",
    "ModuleLoadError",
    "ReferenceResolutionError",
    "TypeGenerationError",
    "ValueNotFoundError",
]


class TypeGenerationError(Exception):
    """Base class for every failure of a generation call."""


class CompilationError(TypeGenerationError):
    """The compiler reported one or more error-severity diagnostics."""

    def __init__(self, diagnostics: Sequence[Diagnostic], source: str):
        self.diagnostics = list(diagnostics)
        self.source = source
        errors = "\n".join(str(d) for d in self.diagnostics)
        super().__init__(f"Compilation failures!\n\n{errors}\n\nCode:\n\n{source}")


class ReferenceResolutionError(TypeGenerationError):
    """A type's declaring module has no stable origin to reference."""

    def __init__(self, target: Any, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Couldn't make a reference to {_describe(target)}: {reason}")


class ValueNotFoundError(TypeGenerationError):
    """No value is cached under the given identifier."""

    def __init__(self, identifier: UUID | str):
        self.identifier = identifier
        super().__init__(f"No cached value with identifier {identifier}")


class ModuleLoadError(TypeGenerationError):
    """Compiled code raised while its module body was executing."""

    def __init__(self, name: str, source: str, cause: BaseException):
        self.name = name
        self.source = source
        super().__init__(
            f"Loading generated module '{name}' failed: "
            f"{type(cause).__name__}: {cause}\n\nCode:\n\n{source}"
        )


class ExportError(TypeGenerationError):
    """A generated module did not export exactly one class."""

    def __init__(self, name: str, exported: Sequence[str]):
        self.name = name
        self.exported = list(exported)
        found = ", ".join(self.exported) if self.exported else "none"
        super().__init__(
            f"Generated module '{name}' must export exactly one class (found: {found})"
        )


def _describe(target: Any) -> str:
    if isinstance(target, type):
        return f"type {target.__module__}.{target.__qualname__}"
    name = getattr(target, "__name__", None)
    if name is not None:
        return f"'{name}'"
    return repr(target)
