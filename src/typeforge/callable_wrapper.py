"""Generate a class whose single method forwards to an arbitrary callable.

The callable itself is put in the value cache; the generated method fetches
it by identifier and calls it with arguments assembled from method
parameters, constructor fields and properties according to the conversion
rules.

Usage:
    wrapper = CallableToTypeWrapper()
    Greeter = wrapper.create_type(lambda name: f"hello {name}")
    Greeter().run("world")
"""

from __future__ import annotations

import typing
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from typeforge.compiler import GeneratedModule, ModuleCompiler
from typeforge.conversion import (
    TYPING_ALIAS,
    ConversionPlan,
    ConversionRule,
    cached_value_expression,
)
from typeforge.introspect import EMPTY, MethodInfo, introspect_callable
from typeforge.logging import get_logger
from typeforge.source import SourceWriter
from typeforge.value_cache import ValueCache, get_default_cache

logger = get_logger("callable_wrapper")

DEFAULT_TYPE_NAME = "GeneratedType"
DEFAULT_NAMESPACE_NAME = "GeneratedNamespace"
DEFAULT_METHOD_NAME = "run"


@dataclass
class CallableWrapperOptions:
    """How to shape the class generated around a callable.

    Attributes:
        type_name: Name of the generated class
        namespace_name: Value of the generated module's __namespace__
        method_name: Name of the generated method
        type_name_generator: Computes the class name; wins over type_name
        namespace_name_generator: Computes the namespace; wins over namespace_name
        method_name_generator: Computes the method name; wins over method_name
        conversion_rules: Rules routing parameters to constructor or properties
        compiler: Compiler to use instead of a fresh one
    """

    type_name: str = DEFAULT_TYPE_NAME
    namespace_name: str = DEFAULT_NAMESPACE_NAME
    method_name: str = DEFAULT_METHOD_NAME
    type_name_generator: Callable[[CallableWrapperOptions], str] | None = None
    namespace_name_generator: Callable[[CallableWrapperOptions], str] | None = None
    method_name_generator: Callable[[CallableWrapperOptions], str] | None = None
    conversion_rules: list[ConversionRule] = field(default_factory=list)
    compiler: ModuleCompiler | None = None

    def resolved_type_name(self) -> str:
        if self.type_name_generator is not None:
            return self.type_name_generator(self)
        return self.type_name

    def resolved_namespace_name(self) -> str:
        if self.namespace_name_generator is not None:
            return self.namespace_name_generator(self)
        return self.namespace_name

    def resolved_method_name(self) -> str:
        if self.method_name_generator is not None:
            return self.method_name_generator(self)
        return self.method_name


class CallableToTypeWrapper:
    """Turns callables into generated classes."""

    def __init__(
        self,
        cache: ValueCache | None = None,
        compiler_factory: Callable[[], ModuleCompiler] | None = None,
    ):
        self.cache = cache if cache is not None else get_default_cache()
        self.compiler_factory = compiler_factory or ModuleCompiler

    def create_type(
        self, func: Callable[..., Any], options: CallableWrapperOptions | None = None
    ) -> type:
        """Generate, compile and load a class wrapping func.

        Raises:
            TypeGenerationError: If func has no signature, or the generated
                source fails to compile or load
        """
        return self.generate(func, options).single_type()

    def generate(
        self, func: Callable[..., Any], options: CallableWrapperOptions | None = None
    ) -> GeneratedModule:
        """Like create_type, but return the whole generated module."""
        options = options or CallableWrapperOptions()
        method = introspect_callable(func)
        type_name = options.resolved_type_name()
        log = logger.with_operation("generate").with_context(type_name=type_name)

        compiler = options.compiler or self.compiler_factory()
        compiler.add_reference(typing)
        compiler.add_references(method.annotations())

        plan = ConversionPlan(options.conversion_rules, self.cache, type_name)
        source = self.render(func, method, options, plan, compiler)
        log.debug("rendered wrapper", callable=method.name, lines=source.count("\n"))

        return compiler.compile(source, namespace={"_value_cache": self.cache})

    def render(
        self,
        func: Callable[..., Any],
        method: MethodInfo,
        options: CallableWrapperOptions,
        plan: ConversionPlan,
        compiler: ModuleCompiler,
    ) -> str:
        converted = plan.convert_method(method)
        identifier = self.cache.add(func)

        writer = SourceWriter()
        writer.lines(f"import {name}" for name in compiler.module_names)
        writer.line(f"import typing as {TYPING_ALIAS}")
        writer.line()
        writer.line(f"__namespace__ = {options.resolved_namespace_name()!r}")
        writer.line()
        writer.line()

        with writer.block(f"class {options.resolved_type_name()}:"):
            writer.line("__namespace__ = __namespace__")
            writer.line()

            with writer.block(f"def __init__({plan.constructor_signature()}):"):
                plan.write_constructor_body(writer)
            writer.line()

            plan.write_properties(writer)

            returns = method.return_annotation
            header = "async def" if method.is_async else "def"
            name = options.resolved_method_name()
            signature = f"{header} {name}({plan.method_signature(converted)})"
            if returns is not EMPTY:
                signature += f" -> {plan.annotation(returns)}"

            with writer.block(f"{signature}:"):
                call = f"{cached_value_expression(identifier)}({converted.arguments()})"
                if method.is_async:
                    call = f"await {call}"

                if returns is EMPTY:
                    writer.line(f"return {call}")
                elif method.returns_value:
                    cast = f"{TYPING_ALIAS}.cast({plan.annotation(returns)!r}, {call})"
                    writer.line(f"return {cast}")
                else:
                    writer.line(call)

        return writer.render()
