"""Compilation service: turn source text into a loaded module.

ModuleCompiler accumulates the references a piece of generated source needs,
compiles the source with the interpreter's compiler and loads the result into
its ExecutionContext, either straight from memory or from a file written to
its working directory.

Usage:
    compiler = ModuleCompiler(persist=False)
    compiler.add_reference(Product)
    generated = compiler.compile(source)
    cls = generated.single_type()
"""

from __future__ import annotations

import importlib.machinery
import importlib.metadata
import importlib.util
import keyword
import linecache
import secrets
import sys
import tempfile
import threading
import uuid
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import CodeType, ModuleType
from typing import Any

from typeforge.context import ContextFactory, ExecutionContext, get_default_context_factory
from typeforge.errors import CompilationError, ExportError, ModuleLoadError
from typeforge.logging import ForgeLogger, get_logger
from typeforge.references import (
    GENERATED_MODULE_ATTRIBUTE,
    REFERENCES_ATTRIBUTE,
    DependencyResolver,
    ReferenceSet,
)

logger = get_logger("compiler")

DEFAULT_VERSION = "1.0.0"

# Compiler flags are fixed: no inherited future flags, asserts kept.
_OPTIMIZE = 0

# warnings.catch_warnings swaps process-wide state; compiles that record
# warnings take turns.
_warnings_lock = threading.Lock()


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """One message reported while compiling generated source."""

    id: str
    message: str
    severity: Severity = Severity.ERROR
    line: int | None = None
    column: int | None = None
    is_warning_as_error: bool = False

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR or self.is_warning_as_error

    def __str__(self) -> str:
        location = ""
        if self.line is not None:
            location = f" (line {self.line}"
            location += f", column {self.column})" if self.column is not None else ")"
        return f"{self.id}: {self.message}{location}"

    @classmethod
    def from_syntax_error(cls, exc: SyntaxError) -> Diagnostic:
        return cls(type(exc).__name__, exc.msg, Severity.ERROR, exc.lineno, exc.offset)

    @classmethod
    def from_warning(cls, warning: warnings.WarningMessage, as_error: bool) -> Diagnostic:
        return cls(
            warning.category.__name__,
            str(warning.message),
            Severity.WARNING,
            warning.lineno,
            None,
            as_error,
        )


@dataclass
class GeneratedModule:
    """A compiled module loaded into an execution context."""

    name: str
    module: ModuleType
    source: str
    context: ExecutionContext
    path: Path | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return self.path is not None

    @property
    def namespace(self) -> str | None:
        """Namespace declared by generated wrapper source, if any."""
        return getattr(self.module, "__namespace__", None)

    def exported_types(self) -> list[type]:
        """Public classes defined by the module itself (honours __all__)."""
        members = vars(self.module)
        names = members.get("__all__")
        if names is not None:
            candidates = [members[n] for n in names if n in members]
        else:
            candidates = [v for k, v in members.items() if not k.startswith("_")]
        return [c for c in candidates if isinstance(c, type) and c.__module__ == self.name]

    def single_type(self) -> type:
        """The one class the module exports.

        Raises:
            ExportError: If the module exports no class or several
        """
        exported = self.exported_types()
        if len(exported) != 1:
            raise ExportError(self.name, [t.__qualname__ for t in exported])
        return exported[0]


def host_identity() -> tuple[str, str]:
    """Name and version of the hosting program."""
    main = sys.modules.get("__main__")
    path = getattr(main, "__file__", None)
    name = Path(path).stem if path else uuid.uuid4().hex

    try:
        host_version = importlib.metadata.version(name)
    except (importlib.metadata.PackageNotFoundError, ValueError):
        host_version = DEFAULT_VERSION

    return name, host_version


def default_working_dir(host: tuple[str, str] | None = None) -> Path:
    """<tempdir>/typeforge/<host name>/<host version>."""
    name, host_version = host or host_identity()
    return Path(tempfile.gettempdir()) / "typeforge" / name / host_version


def _random_name() -> str:
    return f"typeforge_{secrets.token_hex(6)}"


def _validate_name(name: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name):
        raise ValueError(f"Generated module name must be an identifier, got {name!r}")


class ModuleCompiler:
    """Compiles generated source against a growing set of references.

    Each compiler owns one ExecutionContext; every module it loads lives there.
    Nothing it produces is cached: compiling the same text twice gives two
    independent modules.
    """

    def __init__(
        self,
        persist: bool = True,
        working_dir: str | Path | None = None,
        references: Iterable[Any] | None = None,
        context: ExecutionContext | None = None,
        context_factory: ContextFactory | None = None,
        warnings_as_errors: bool = False,
        version: str | None = None,
    ):
        """Initialize the compiler.

        Args:
            persist: Write each module to the working directory before loading it
            working_dir: Directory for persisted modules (default: default_working_dir())
            references: Types or modules to reference up front
            context: Execution context to load into
            context_factory: Factory used when no context is given
            warnings_as_errors: Treat compiler warnings as errors
            version: Version stamped on generated modules (default: host version)
        """
        self.persist = persist
        self.warnings_as_errors = warnings_as_errors
        self.name: str | None = None

        if working_dir is None or version is None:
            host = host_identity()
            working_dir = working_dir or default_working_dir(host)
            version = version or host[1]

        self._working_dir = Path(working_dir)
        self._version = version

        if context is None:
            context = (context_factory or get_default_context_factory())()
        if context is None:
            context = get_default_context_factory()()
        self._context = context

        self._resolver = DependencyResolver(context)
        for target in references or ():
            self.add_reference(target)

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def version(self) -> str:
        return self._version

    @property
    def references(self) -> ReferenceSet:
        return self._resolver.references

    @property
    def resolver(self) -> DependencyResolver:
        return self._resolver

    @property
    def module_names(self) -> list[str]:
        """Modules the generated source must import."""
        return self._resolver.module_names

    def add_reference(self, target: Any) -> None:
        """Reference a type, a module or a previously generated module.

        Raises:
            ReferenceResolutionError: If the declaring module has no stable origin
        """
        if isinstance(target, GeneratedModule):
            target = target.module
        if isinstance(target, ModuleType):
            self._resolver.add_module(target)
        else:
            self._resolver.add_type(target)

    def add_references(self, annotations: Iterable[Any]) -> None:
        """Reference every type needed to spell the given annotations."""
        self._resolver.add_types(annotations)

    def compile(self, source: str, namespace: Mapping[str, Any] | None = None) -> GeneratedModule:
        """Compile source and load it into the context.

        Args:
            source: Complete module source
            namespace: Globals to seed the module with before its body runs

        Returns:
            The loaded GeneratedModule

        Raises:
            CompilationError: If the compiler reports errors
            ModuleLoadError: If executing the module body raises
        """
        name = self.name or _random_name()
        _validate_name(name)

        path = self._working_dir / f"{name}.py" if self.persist else None
        filename = str(path) if path is not None else f"<typeforge:{name}>"
        log = logger.with_operation("compile").with_context(unit=name)

        with log.timed("compile", persist=self.persist, references=len(self.references)):
            code, diagnostics = self._compile(source, filename, log)
            if path is not None:
                self._working_dir.mkdir(parents=True, exist_ok=True)
                path.write_text(source, encoding="utf-8")
            module = self._new_module(name, source, filename, path)
            self._execute(module, code, source, namespace)

        generated = GeneratedModule(
            name=name,
            module=module,
            source=source,
            context=self._context,
            path=path,
            diagnostics=diagnostics,
        )
        for cls in generated.exported_types():
            setattr(cls, GENERATED_MODULE_ATTRIBUTE, module)

        log.info("loaded generated module", context=self._context.name, path=path or "memory")
        return generated

    def _compile(
        self, source: str, filename: str, log: ForgeLogger
    ) -> tuple[CodeType, list[Diagnostic]]:
        diagnostics: list[Diagnostic] = []
        code = None

        with _warnings_lock, warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                code = compile(source, filename, "exec", dont_inherit=True, optimize=_OPTIMIZE)
            except SyntaxError as exc:
                diagnostics.append(Diagnostic.from_syntax_error(exc))
            except ValueError as exc:
                diagnostics.append(Diagnostic(type(exc).__name__, str(exc)))

        warned = [Diagnostic.from_warning(w, self.warnings_as_errors) for w in caught]
        diagnostics = warned + diagnostics

        for diagnostic in diagnostics:
            if not diagnostic.is_error:
                log.warning("compiler warning", diagnostic=str(diagnostic))

        errors = [d for d in diagnostics if d.is_error]
        if errors or code is None:
            log.error("compilation failed", errors=len(errors))
            raise CompilationError(errors, source)

        return code, diagnostics

    def _new_module(
        self, name: str, source: str, filename: str, path: Path | None
    ) -> ModuleType:
        if path is not None:
            spec = importlib.util.spec_from_file_location(name, path)
            return importlib.util.module_from_spec(spec)

        # In-memory modules keep their source in linecache for tracebacks.
        linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)
        module = ModuleType(name)
        module.__spec__ = importlib.machinery.ModuleSpec(name, None, origin=filename)
        return module

    def _execute(
        self,
        module: ModuleType,
        code: CodeType,
        source: str,
        namespace: Mapping[str, Any] | None,
    ) -> None:
        module.__builtins__ = self._context.builtins_for_module()
        module.__version__ = self._version
        setattr(module, REFERENCES_ATTRIBUTE, tuple(self._resolver.modules.values()))
        for key, value in (namespace or {}).items():
            setattr(module, key, value)

        self._context.set_references(self._resolver.modules.values())

        try:
            exec(code, vars(module))
        except Exception as exc:
            raise ModuleLoadError(module.__name__, source, exc) from exc

        self._context.register(module)
