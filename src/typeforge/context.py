"""Isolated execution contexts for generated modules.

An ExecutionContext owns the modules a compiler loads. Generated modules are
never put in sys.modules; instead their import statement is routed through
the context, which hands out its own modules and the modules it was given as
references before falling back to the regular import system. Two contexts
therefore never see each other's modules, even when module names collide.

Usage:
    context = ExecutionContext("session")
    compiler = ModuleCompiler(context=context)

    # Or replace the factory every compiler without an explicit context uses
    set_default_context_factory(lambda: ExecutionContext("tests"))
"""

from __future__ import annotations

import builtins
import threading
from collections.abc import Callable, Iterable
from types import ModuleType
from typing import Any

from typeforge.logging import get_logger

logger = get_logger("context")


class ExecutionContext:
    """Scope for name resolution of generated modules."""

    def __init__(self, name: str | None = None):
        self.name = name or f"context-{id(self):x}"
        self._modules: dict[str, ModuleType] = {}
        self._references: dict[str, ModuleType] = {}
        self._lock = threading.RLock()

    @property
    def modules(self) -> dict[str, ModuleType]:
        """Modules loaded into this context, by name."""
        with self._lock:
            return dict(self._modules)

    def set_references(self, modules: Iterable[ModuleType]) -> None:
        """Make referenced modules importable by generated code."""
        with self._lock:
            for module in modules:
                self._references.setdefault(module.__name__, module)

    def register(self, module: ModuleType) -> None:
        """Record a module loaded into this context."""
        with self._lock:
            self._modules[module.__name__] = module
        logger.debug("registered module", context=self.name, module=module.__name__)

    def resolve(self, name: str) -> ModuleType | None:
        """Find a module by name among the context's own modules and references.

        Returns None when the regular import system should handle the name.
        """
        with self._lock:
            module = self._modules.get(name)
            if module is None:
                module = self._references.get(name)
            return module

    def import_module(
        self,
        name: str,
        globals: dict[str, Any] | None = None,
        locals: dict[str, Any] | None = None,
        fromlist: tuple[str, ...] | list[str] | None = (),
        level: int = 0,
    ) -> ModuleType:
        """Drop-in replacement for __import__ inside generated modules."""
        # A bare "import a.b" must bind the top-level package, which only the
        # regular import system knows how to produce.
        if level == 0 and (fromlist or "." not in name):
            module = self.resolve(name)
            if module is not None:
                return module
        return builtins.__import__(name, globals, locals, fromlist or (), level)

    def builtins_for_module(self) -> dict[str, Any]:
        """A builtins namespace whose import goes through this context."""
        namespace = dict(vars(builtins))
        namespace["__import__"] = self.import_module
        return namespace

    def __repr__(self) -> str:
        return f"ExecutionContext({self.name!r}, modules={sorted(self._modules)})"


ContextFactory = Callable[[], ExecutionContext]


def _builtin_factory() -> ExecutionContext:
    return ExecutionContext()


_default_factory: ContextFactory = _builtin_factory


def get_default_context_factory() -> ContextFactory:
    """Factory used by compilers created without a context."""
    return _default_factory


def set_default_context_factory(factory: ContextFactory | None) -> None:
    """Override the default factory; None restores the built-in one."""
    global _default_factory
    _default_factory = factory if factory is not None else _builtin_factory
