"""Tests for the compilation service."""

import inspect
import linecache
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import sample_types
from sample_types import Product

from typeforge.compiler import (
    DEFAULT_VERSION,
    Diagnostic,
    GeneratedModule,
    ModuleCompiler,
    Severity,
    default_working_dir,
    host_identity,
)
from typeforge.context import (
    ExecutionContext,
    get_default_context_factory,
    set_default_context_factory,
)
from typeforge.errors import (
    CompilationError,
    ExportError,
    ModuleLoadError,
    ReferenceResolutionError,
)
from typeforge.references import GENERATED_MODULE_ATTRIBUTE, REFERENCES_ATTRIBUTE

SIMPLE_SOURCE = """
class Simple:
    def value(self) -> int:
        return 42
"""

PRODUCT_SOURCE = """
import sample_types


class Shop:
    def make(self) -> sample_types.Product:
        return sample_types.Product(name="made")
"""


@pytest.fixture
def ephemeral():
    return ModuleCompiler(persist=False, version="2.0.0")


@pytest.fixture
def persisted(tmp_path):
    return ModuleCompiler(working_dir=tmp_path, version="2.0.0")


@pytest.fixture
def restore_default_factory():
    original = get_default_context_factory()
    yield
    set_default_context_factory(original)


class TestDiagnostic:
    """Tests for Diagnostic."""

    def test_error_is_error(self):
        assert Diagnostic("SyntaxError", "bad").is_error

    def test_warning_is_not_error(self):
        assert not Diagnostic("SyntaxWarning", "meh", Severity.WARNING).is_error

    def test_escalated_warning_is_error(self):
        diagnostic = Diagnostic("SyntaxWarning", "meh", Severity.WARNING, is_warning_as_error=True)
        assert diagnostic.is_error

    def test_str_with_location(self):
        diagnostic = Diagnostic("SyntaxError", "invalid syntax", line=3, column=7)
        assert str(diagnostic) == "SyntaxError: invalid syntax (line 3, column 7)"

    def test_str_without_location(self):
        assert str(Diagnostic("ValueError", "null bytes")) == "ValueError: null bytes"


class TestHostIdentity:
    """Tests for host naming helpers."""

    def test_host_identity_has_version(self):
        name, version = host_identity()

        assert name
        assert version

    def test_default_working_dir_layout(self):
        path = default_working_dir(("myhost", "3.1.4"))

        assert path.parts[-3:] == ("typeforge", "myhost", "3.1.4")

    def test_unknown_host_gets_default_version(self, monkeypatch):
        monkeypatch.setattr(
            sys.modules["__main__"], "__file__", "/nowhere/zz_not_installed.py", raising=False
        )

        name, version = host_identity()

        assert name == "zz_not_installed"
        assert version == DEFAULT_VERSION


class TestEphemeralCompile:
    """Tests for in-memory compilation."""

    def test_compile_returns_generated_module(self, ephemeral):
        generated = ephemeral.compile(SIMPLE_SOURCE)

        assert isinstance(generated, GeneratedModule)
        assert not generated.persisted
        assert generated.single_type()().value() == 42

    def test_module_not_in_sys_modules(self, ephemeral):
        generated = ephemeral.compile(SIMPLE_SOURCE)

        assert generated.name not in sys.modules
        assert ephemeral.context.resolve(generated.name) is generated.module

    def test_never_touches_filesystem(self, tmp_path):
        compiler = ModuleCompiler(persist=False, working_dir=tmp_path)
        compiler.compile(SIMPLE_SOURCE)

        assert list(tmp_path.iterdir()) == []

    def test_source_available_to_tracebacks(self, ephemeral):
        generated = ephemeral.compile(SIMPLE_SOURCE)
        filename = f"<typeforge:{generated.name}>"

        assert "return 42" in "".join(linecache.getlines(filename))

    def test_version_and_references_are_set(self, ephemeral):
        ephemeral.add_reference(Product)
        generated = ephemeral.compile(PRODUCT_SOURCE)

        assert generated.module.__version__ == "2.0.0"
        assert sample_types in getattr(generated.module, REFERENCES_ATTRIBUTE)

    def test_referenced_types_usable(self, ephemeral):
        ephemeral.add_reference(Product)
        shop = ephemeral.compile(PRODUCT_SOURCE).single_type()()

        product = shop.make()

        assert isinstance(product, Product)
        assert product.name == "made"

    def test_namespace_seeds_globals(self, ephemeral):
        source = "class Reader:\n    def read(self):\n        return injected\n"

        generated = ephemeral.compile(source, namespace={"injected": "seeded"})

        assert generated.single_type()().read() == "seeded"

    def test_caller_assigned_name(self, ephemeral):
        ephemeral.name = "my_unit"

        generated = ephemeral.compile(SIMPLE_SOURCE)

        assert generated.name == "my_unit"
        assert generated.single_type().__module__ == "my_unit"

    def test_invalid_name_rejected(self, ephemeral):
        ephemeral.name = "class"

        with pytest.raises(ValueError):
            ephemeral.compile(SIMPLE_SOURCE)

    def test_compiling_twice_gives_distinct_types(self, ephemeral):
        first = ephemeral.compile(SIMPLE_SOURCE).single_type()
        second = ephemeral.compile(SIMPLE_SOURCE).single_type()

        assert first is not second
        assert first.__name__ == second.__name__
        assert [n for n in vars(first) if not n.startswith("__")] == [
            n for n in vars(second) if not n.startswith("__")
        ]

    def test_exported_classes_are_stamped(self, ephemeral):
        generated = ephemeral.compile(SIMPLE_SOURCE)
        cls = generated.single_type()

        assert vars(cls)[GENERATED_MODULE_ATTRIBUTE] is generated.module


class TestPersistedCompile:
    """Tests for compilation through the working directory."""

    def test_writes_file(self, persisted, tmp_path):
        generated = persisted.compile(SIMPLE_SOURCE)

        assert generated.persisted
        assert generated.path == tmp_path / f"{generated.name}.py"
        assert generated.path.read_text(encoding="utf-8") == SIMPLE_SOURCE

    def test_types_have_stable_file(self, persisted):
        generated = persisted.compile(SIMPLE_SOURCE)
        cls = generated.single_type()

        assert generated.module.__file__ == str(generated.path)
        assert "return 42" in inspect.getsource(cls.value)

    def test_creates_working_dir(self, tmp_path):
        target = tmp_path / "nested" / "dir"
        compiler = ModuleCompiler(working_dir=target)

        compiler.compile(SIMPLE_SOURCE)

        assert target.is_dir()

    def test_chained_generation(self, tmp_path):
        first = ModuleCompiler(working_dir=tmp_path)
        first.add_reference(Product)
        base = first.compile(PRODUCT_SOURCE)
        shop_type = base.single_type()

        second = ModuleCompiler(working_dir=tmp_path)
        second.add_reference(shop_type)
        source = (
            f"import {base.name}\n\n\n"
            f"class Branch({base.name}.Shop):\n"
            "    def branch(self):\n"
            "        return self.make().name\n"
        )
        branch = second.compile(source).single_type()

        assert branch().branch() == "made"
        assert set(second.resolver.modules) >= {base.name, "sample_types"}

    def test_ephemeral_module_cannot_be_referenced(self, ephemeral):
        generated = ephemeral.compile(SIMPLE_SOURCE)
        other = ModuleCompiler(persist=False)

        with pytest.raises(ReferenceResolutionError):
            other.add_reference(generated)


class TestReferences:
    """Tests for reference bookkeeping on the compiler."""

    def test_add_reference_is_idempotent(self, ephemeral):
        ephemeral.add_reference(Product)
        size = len(ephemeral.references)

        for _ in range(3):
            ephemeral.add_reference(Product)

        assert len(ephemeral.references) == size

    def test_add_reference_accepts_modules(self, ephemeral):
        ephemeral.add_reference(sample_types)

        assert "sample_types" in ephemeral.references.module_names

    def test_initial_references(self):
        compiler = ModuleCompiler(persist=False, references=[Product, int])

        assert set(compiler.references.module_names) == {"sample_types", "builtins"}

    def test_add_references_walks_annotations(self, ephemeral):
        ephemeral.add_references([dict[str, list[Product]]])

        assert "sample_types" in ephemeral.references.module_names


class TestCompilationErrors:
    """Tests for failure reporting."""

    def test_syntax_error(self, ephemeral):
        source = "class Broken(:\n    pass\n"

        with pytest.raises(CompilationError) as exc_info:
            ephemeral.compile(source)

        message = str(exc_info.value)
        assert message.startswith("Compilation failures!")
        assert "SyntaxError" in message
        assert source in message
        assert exc_info.value.source == source
        assert len(exc_info.value.diagnostics) == 1

    def test_null_bytes(self, ephemeral):
        with pytest.raises(CompilationError) as exc_info:
            ephemeral.compile("x = 1\0\n")

        assert exc_info.value.diagnostics

    def test_warning_is_not_fatal_by_default(self, ephemeral):
        source = "class Warned:\n    def check(self):\n        return 1 is 1\n"

        generated = ephemeral.compile(source)

        assert any(d.id == "SyntaxWarning" for d in generated.diagnostics)
        assert generated.single_type()().check() is True

    def test_warnings_as_errors(self):
        compiler = ModuleCompiler(persist=False, warnings_as_errors=True)
        source = "class Warned:\n    def check(self):\n        return 1 is 1\n"

        with pytest.raises(CompilationError) as exc_info:
            compiler.compile(source)

        assert exc_info.value.diagnostics[0].id == "SyntaxWarning"
        assert exc_info.value.diagnostics[0].is_warning_as_error

    def test_concurrent_compiles_keep_their_warnings(self):
        source = "class Warned:\n    def check(self):\n        return 1 is 1\n"
        workers = 8
        barrier = threading.Barrier(workers, timeout=10)

        def compile_warned(_):
            compiler = ModuleCompiler(persist=False, warnings_as_errors=True)
            barrier.wait()
            failures = []
            for _ in range(10):
                with pytest.raises(CompilationError) as exc_info:
                    compiler.compile(source)
                failures.append(exc_info.value.diagnostics[0].id)
            return failures

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(compile_warned, range(workers)))

        assert results == [["SyntaxWarning"] * 10] * workers

    def test_failed_compile_writes_nothing(self, persisted, tmp_path):
        with pytest.raises(CompilationError):
            persisted.compile("def broken(:\n")

        assert list(tmp_path.iterdir()) == []

    def test_module_body_failure(self, ephemeral):
        source = "raise RuntimeError('boom')\n"

        with pytest.raises(ModuleLoadError) as exc_info:
            ephemeral.compile(source)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert "boom" in str(exc_info.value)
        assert exc_info.value.source == source

    def test_no_exported_class(self, ephemeral):
        generated = ephemeral.compile("VALUE = 1\n")

        with pytest.raises(ExportError):
            generated.single_type()

    def test_two_exported_classes(self, ephemeral):
        generated = ephemeral.compile("class A:\n    pass\n\n\nclass B:\n    pass\n")

        with pytest.raises(ExportError) as exc_info:
            generated.single_type()

        assert exc_info.value.exported == ["A", "B"]

    def test_dunder_all_limits_exports(self, ephemeral):
        source = "__all__ = ['B']\n\n\nclass A:\n    pass\n\n\nclass B:\n    pass\n"

        assert ephemeral.compile(source).single_type().__name__ == "B"


class TestContexts:
    """Tests for execution context selection."""

    def test_explicit_context(self):
        context = ExecutionContext("explicit")
        compiler = ModuleCompiler(persist=False, context=context)

        generated = compiler.compile(SIMPLE_SOURCE)

        assert generated.context is context
        assert generated.name in context.modules

    def test_context_factory(self):
        context = ExecutionContext("from-factory")
        compiler = ModuleCompiler(persist=False, context_factory=lambda: context)

        assert compiler.context is context

    def test_default_factory_override(self, restore_default_factory):
        context = ExecutionContext("global")
        set_default_context_factory(lambda: context)

        compiler = ModuleCompiler(persist=False)

        assert compiler.context is context

    def test_compilers_do_not_share_modules(self):
        first = ModuleCompiler(persist=False)
        second = ModuleCompiler(persist=False)

        generated = first.compile(SIMPLE_SOURCE)

        assert second.context.resolve(generated.name) is None

    def test_intercepting_context(self):
        class RecordingContext(ExecutionContext):
            def __init__(self):
                super().__init__("recording")
                self.registered: list[str] = []

            def register(self, module):
                self.registered.append(module.__name__)
                super().register(module)

        context = RecordingContext()
        compiler = ModuleCompiler(persist=False, context=context)
        generated = compiler.compile(SIMPLE_SOURCE)

        assert context.registered == [generated.name]


class TestLogging:
    """Tests for compiler log output."""

    def test_compile_logs_load(self, ephemeral, caplog):
        with caplog.at_level("DEBUG", logger="typeforge"):
            generated = ephemeral.compile(SIMPLE_SOURCE)

        messages = [r.getMessage() for r in caplog.records]
        assert "loaded generated module" in messages
        assert "compile completed" in messages
        assert any(r.name == "typeforge.compiler" for r in caplog.records)
        assert generated.name

    def test_failure_is_logged(self, ephemeral, caplog):
        with caplog.at_level("ERROR", logger="typeforge"):
            with pytest.raises(CompilationError):
                ephemeral.compile("def (:\n")

        assert any(r.getMessage() == "compilation failed" for r in caplog.records)
