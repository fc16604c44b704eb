"""Tests for execution contexts."""

import collections
import json
import types

import pytest

from typeforge.context import (
    ExecutionContext,
    get_default_context_factory,
    set_default_context_factory,
)


@pytest.fixture
def restore_default_factory():
    original = get_default_context_factory()
    yield
    set_default_context_factory(original)


def _module(name: str, **attrs) -> types.ModuleType:
    module = types.ModuleType(name)
    for key, value in attrs.items():
        setattr(module, key, value)
    return module


class TestExecutionContext:
    """Tests for ExecutionContext."""

    def test_default_name(self):
        context = ExecutionContext()
        assert context.name.startswith("context-")

    def test_register_and_resolve(self):
        context = ExecutionContext("ctx")
        module = _module("generated_one")

        context.register(module)

        assert context.resolve("generated_one") is module
        assert context.modules == {"generated_one": module}

    def test_resolve_unknown_returns_none(self):
        assert ExecutionContext().resolve("json") is None

    def test_references_are_resolvable(self):
        context = ExecutionContext()
        module = _module("referenced")

        context.set_references([module])

        assert context.resolve("referenced") is module
        assert "referenced" not in context.modules

    def test_own_modules_win_over_references(self):
        context = ExecutionContext()
        own = _module("shared_name")
        referenced = _module("shared_name")

        context.set_references([referenced])
        context.register(own)

        assert context.resolve("shared_name") is own

    def test_contexts_are_isolated(self):
        first = ExecutionContext("first")
        second = ExecutionContext("second")
        first.register(_module("only_in_first"))

        assert second.resolve("only_in_first") is None

    def test_import_module_uses_context(self):
        context = ExecutionContext()
        module = _module("private_module")
        context.register(module)

        assert context.import_module("private_module") is module
        assert context.import_module("private_module", fromlist=("x",)) is module

    def test_import_module_falls_back(self):
        assert ExecutionContext().import_module("json") is json

    def test_dotted_import_binds_top_level_package(self):
        context = ExecutionContext()
        context.set_references([_module("collections.abc")])

        assert context.import_module("collections.abc") is collections

    def test_builtins_route_imports(self):
        context = ExecutionContext()
        module = _module("hidden_module", answer=42)
        context.register(module)
        namespace = {"__builtins__": context.builtins_for_module()}

        exec("import hidden_module\nresult = hidden_module.answer", namespace)

        assert namespace["result"] == 42

    def test_builtins_are_a_copy(self):
        import builtins

        context = ExecutionContext()
        namespace = context.builtins_for_module()

        assert namespace["__import__"] == context.import_module
        assert builtins.__import__ is not namespace["__import__"]

    def test_repr(self):
        context = ExecutionContext("named")
        context.register(_module("b_mod"))
        context.register(_module("a_mod"))

        assert repr(context) == "ExecutionContext('named', modules=['a_mod', 'b_mod'])"


class TestDefaultContextFactory:
    """Tests for the process-wide default factory."""

    def test_default_factory_creates_fresh_contexts(self):
        factory = get_default_context_factory()
        assert factory() is not factory()

    def test_override_and_restore(self, restore_default_factory):
        shared = ExecutionContext("shared")
        set_default_context_factory(lambda: shared)

        assert get_default_context_factory()() is shared

        set_default_context_factory(None)
        assert get_default_context_factory()() is not shared
