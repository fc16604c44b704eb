"""Dependency resolution for generated source.

Generated code names every type it mentions through an import path, so the
modules declaring those types must be importable from inside the execution
context. This module walks annotation graphs to find those types and maps
each one to a Reference: the module that declares it plus a stable location
string used to deduplicate modules loaded from the same origin.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import ModuleType
from typing import TYPE_CHECKING, Any

from typeforge.errors import ReferenceResolutionError
from typeforge.introspect import declaring_module_name, type_arguments
from typeforge.logging import get_logger

if TYPE_CHECKING:
    from typeforge.context import ExecutionContext

logger = get_logger("references")

# Attribute set on modules produced by the compiler: the modules the generated
# code was compiled against.
REFERENCES_ATTRIBUTE = "__references__"

# Attribute set on classes produced by the compiler: the module owning them.
GENERATED_MODULE_ATTRIBUTE = "__generated_module__"


@dataclass(frozen=True)
class Reference:
    """A module that generated code needs in scope."""

    module_name: str
    location: str


class ReferenceSet:
    """References without duplicate locations; only ever grows."""

    def __init__(self, references: Iterable[Reference] = ()):
        self._by_location: dict[str, Reference] = {}
        for reference in references:
            self.add(reference)

    def add(self, reference: Reference) -> bool:
        """Add a reference; returns False if its location is already present."""
        if reference.location in self._by_location:
            return False
        self._by_location[reference.location] = reference
        return True

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Reference):
            return item.location in self._by_location
        return item in self._by_location

    def __iter__(self) -> Iterator[Reference]:
        return iter(list(self._by_location.values()))

    def __len__(self) -> int:
        return len(self._by_location)

    @property
    def locations(self) -> list[str]:
        return list(self._by_location)

    @property
    def module_names(self) -> list[str]:
        """Distinct module names, in the order they were added."""
        return list(dict.fromkeys(r.module_name for r in self._by_location.values()))


def module_location(module: ModuleType) -> str:
    """Stable origin of a module.

    Raises:
        ReferenceResolutionError: If the module has no file and is not built in
    """
    path = getattr(module, "__file__", None)
    if path:
        return str(path)

    spec = getattr(module, "__spec__", None)
    origin = getattr(spec, "origin", None)
    if origin in ("built-in", "frozen"):
        return f"{origin}:{module.__name__}"
    if module.__name__ in sys.builtin_module_names:
        return f"built-in:{module.__name__}"

    raise ReferenceResolutionError(module, "the module has no stable on-disk origin")


def required_types(annotations: Iterable[Any]) -> list[Any]:
    """Every type that must be nameable to spell the given annotations.

    Walks generic arguments depth first; a visited set keyed by identity
    stops recursion on self-referential generics.
    """
    visited: set[int] = set()
    found: list[Any] = []

    def walk(annotation: Any) -> None:
        if id(annotation) in visited:
            return
        visited.add(id(annotation))

        if declaring_module_name(annotation) is not None:
            found.append(annotation)

        origin = getattr(annotation, "__origin__", None)
        if origin is not None and not isinstance(origin, str):
            walk(origin)

        for argument in type_arguments(annotation):
            walk(argument)

    for annotation in annotations:
        walk(annotation)

    return found


class DependencyResolver:
    """Accumulates the references needed to compile one piece of source.

    Usage:
        resolver = DependencyResolver(context)
        resolver.add_types([int, list[Product]])
        resolver.module_names
    """

    def __init__(self, context: ExecutionContext | None = None):
        self._context = context
        self._references = ReferenceSet()
        self._modules: dict[str, ModuleType] = {}
        self._seen: set[int] = set()

    @property
    def references(self) -> ReferenceSet:
        return self._references

    @property
    def modules(self) -> dict[str, ModuleType]:
        """Referenced modules by name."""
        return dict(self._modules)

    @property
    def module_names(self) -> list[str]:
        """Names generated code imports, one per referenced module object."""
        return list(self._modules)

    def add_types(self, annotations: Iterable[Any]) -> None:
        """Reference the declaring modules of annotations and their generic arguments."""
        for annotation in required_types(annotations):
            self.add_type(annotation)

    def add_type(self, annotation: Any) -> None:
        module = self.module_of(annotation)
        qualname = getattr(annotation, "__qualname__", "")
        if "<locals>" in qualname:
            raise ReferenceResolutionError(
                annotation, "it is defined inside a function and cannot be imported by name"
            )
        try:
            self.add_module(module)
        except ReferenceResolutionError as exc:
            raise ReferenceResolutionError(annotation, exc.reason) from exc

    def add_module(self, module: ModuleType) -> None:
        """Reference a module and, recursively, its declared references.

        Adding a module twice is a no-op.
        """
        if id(module) in self._seen:
            return
        self._seen.add(id(module))

        reference = Reference(module.__name__, module_location(module))
        # A second name for an already referenced file still needs its own import.
        self._modules.setdefault(module.__name__, module)
        if not self._references.add(reference):
            logger.debug(
                "location already referenced", module=module.__name__, location=reference.location
            )
            return

        logger.debug("referenced module", module=module.__name__, location=reference.location)

        for dependency in getattr(module, REFERENCES_ATTRIBUTE, ()):
            self.add_module(dependency)

    def module_of(self, annotation: Any) -> ModuleType:
        """Module object declaring an annotation.

        Raises:
            ReferenceResolutionError: If the module cannot be found
        """
        generated = vars(annotation).get(GENERATED_MODULE_ATTRIBUTE) if isinstance(
            annotation, type
        ) else None
        if generated is not None:
            return generated

        name = declaring_module_name(annotation)
        module = self._find_module(name) if name else None
        if module is None:
            raise ReferenceResolutionError(annotation, f"module '{name}' is not loaded")
        return module

    def _find_module(self, name: str) -> ModuleType | None:
        if name in self._modules:
            return self._modules[name]
        if self._context is not None:
            module = self._context.resolve(name)
            if module is not None:
                return module
        return sys.modules.get(name)
