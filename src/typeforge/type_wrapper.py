"""Generate a class that wraps an instance of an existing class.

The generated class owns one instance of the original, created when the
wrapper is constructed, and exposes the selected methods and properties of
the original by forwarding to it. Hooks run before and after each forwarded
method and after construction; caller-supplied code fragments can be spliced
into the constructor, around each call, and into the class body.

Usage:
    options = TypeWrapperOptions(
        include_methods=["hello_*"],
        on_before_method=lambda instance, method: print("calling", method.name),
    )
    Wrapped = TypeToTypeWrapper().create_type(Greeter, options)
    Wrapped().hello_world(1, "x")
"""

from __future__ import annotations

import functools
import re
import typing
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from typeforge.compiler import GeneratedModule, ModuleCompiler
from typeforge.conversion import (
    CACHE_GLOBAL,
    ConversionPlan,
    ConversionRule,
    ConvertedMethod,
    cached_value_expression,
)
from typeforge.introspect import (
    EMPTY,
    MethodInfo,
    MethodKind,
    PropertyInfo,
    get_methods,
    get_properties,
    qualified_name,
)
from typeforge.logging import get_logger
from typeforge.source import SourceWriter, embed_source, placeholder_statement, prettify
from typeforge.value_cache import ValueCache, get_default_cache

logger = get_logger("type_wrapper")

DEFAULT_TYPE_NAME = "GeneratedType"
DEFAULT_NAMESPACE_NAME = "GeneratedNamespace"


class MethodHook(Protocol):
    """Called with the wrapped instance around each forwarded method."""

    def __call__(self, instance: Any, method: MethodInfo) -> None: ...


class ConstructHook(Protocol):
    """Called with the wrapped instance when a wrapper is constructed."""

    def __call__(self, instance: Any) -> None: ...


@dataclass(frozen=True)
class AdditionalParameter:
    """An extra constructor parameter of the generated class, stored as `_name`."""

    annotation: Any
    name: str


def default_include_method(
    options: TypeWrapperOptions, original_type: type, method: MethodInfo
) -> bool:
    """Public, concrete, non-generic instance methods declared on the type itself."""
    if method.is_abstract:
        return False
    if not method.is_public:
        return False
    if method.kind is not MethodKind.INSTANCE:
        return False
    if method.is_generic:
        return False
    return method.declaring_type is original_type


def never_exclude(options: TypeWrapperOptions, original_type: type, method: MethodInfo) -> bool:
    return False


def default_method_name(
    options: TypeWrapperOptions, original_type: type, method: MethodInfo
) -> str:
    return method.name


def default_factory(options: TypeWrapperOptions, original_type: type) -> Any:
    return original_type()


@dataclass
class TypeWrapperOptions:
    """How to shape the class generated around an existing class.

    Attributes:
        conversion_rules: Rules routing method parameters to constructor or properties
        type_name: Name of the generated class
        namespace_name: Value of the generated module's __namespace__
        include_methods: Method names or glob patterns to wrap; empty wraps all
        include_properties: Property glob patterns to pass through
        exclude_method: Predicate removing methods after include_method
        include_method: Predicate selecting candidate methods
        method_name_generator: Name of each generated method
        type_decorators_generator: Decorators applied to the generated class
        type_name_generator: Computes the class name; wins over type_name
        namespace_name_generator: Computes the namespace; wins over namespace_name
        factory: Creates the wrapped instance for each wrapper object
        on_constructor: Hook called with the new instance
        on_constructor_custom_code_generator: Code appended to __init__
        on_before_method: Hook called before each forwarded call
        on_before_method_custom_code_generator: Code run before each forwarded call
        on_after_method: Hook called after each forwarded call
        on_after_method_custom_code_generator: Code run after each forwarded call,
            with the return value bound to `result`
        custom_code_generator: Code appended to the class body
        additional_constructor_parameters: Extra __init__ parameters
        additional_namespaces: Extra modules imported by the generated source
        additional_references: Extra types or modules to reference
        include_source: Embed the generated source as `__source__`
        prettify_source: Re-render the source canonically before compiling
        inherits: Base class of the generated class
        implements: Further bases, typically protocols or ABCs
        compiler: Compiler to use instead of a fresh one
    """

    conversion_rules: list[ConversionRule] = field(default_factory=list)
    type_name: str = DEFAULT_TYPE_NAME
    namespace_name: str = DEFAULT_NAMESPACE_NAME
    include_methods: list[str] = field(default_factory=list)
    include_properties: list[str] = field(default_factory=list)
    exclude_method: Callable[[TypeWrapperOptions, type, MethodInfo], bool] = never_exclude
    include_method: Callable[[TypeWrapperOptions, type, MethodInfo], bool] = (
        default_include_method
    )
    method_name_generator: Callable[[TypeWrapperOptions, type, MethodInfo], str] = (
        default_method_name
    )
    type_decorators_generator: Callable[[TypeWrapperOptions, type], list[Any]] | None = None
    type_name_generator: Callable[[TypeWrapperOptions, type], str] | None = None
    namespace_name_generator: Callable[[TypeWrapperOptions, type], str] | None = None
    factory: Callable[[TypeWrapperOptions, type], Any] = default_factory
    on_constructor: ConstructHook | None = None
    on_constructor_custom_code_generator: Callable[[TypeWrapperOptions, type], str] | None = None
    on_before_method: MethodHook | None = None
    on_before_method_custom_code_generator: (
        Callable[[TypeWrapperOptions, type, MethodInfo], str] | None
    ) = None
    on_after_method: MethodHook | None = None
    on_after_method_custom_code_generator: (
        Callable[[TypeWrapperOptions, type, MethodInfo], str] | None
    ) = None
    custom_code_generator: Callable[[TypeWrapperOptions, type], str] | None = None
    additional_constructor_parameters: list[AdditionalParameter] = field(default_factory=list)
    additional_namespaces: list[str] = field(default_factory=list)
    additional_references: list[Any] = field(default_factory=list)
    include_source: bool = True
    prettify_source: bool = True
    inherits: type | None = None
    implements: list[type] = field(default_factory=list)
    compiler: ModuleCompiler | None = None

    def resolved_type_name(self, original_type: type) -> str:
        if self.type_name_generator is not None:
            return self.type_name_generator(self, original_type)
        return self.type_name

    def resolved_namespace_name(self, original_type: type) -> str:
        if self.namespace_name_generator is not None:
            return self.namespace_name_generator(self, original_type)
        return self.namespace_name

    @property
    def bases(self) -> list[type]:
        found = [self.inherits] if self.inherits is not None else []
        found.extend(self.implements)
        return found


# =============================================================================
# Member selection
# =============================================================================


@functools.cache
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Regex for a glob, used with fullmatch: `?` matches one character, `*` any run."""
    escaped = re.escape(pattern).replace(r"\?", ".").replace(r"\*", ".*")
    return re.compile(escaped)


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(name == p or glob_to_regex(p).fullmatch(name) for p in patterns)


def select_methods(original_type: type, options: TypeWrapperOptions) -> list[MethodInfo]:
    """Methods to wrap, in declaration order."""
    selected = []
    for method in get_methods(original_type):
        if not options.include_method(options, original_type, method):
            continue
        if options.exclude_method(options, original_type, method):
            continue
        if options.include_methods and not matches_any(method.name, options.include_methods):
            continue
        selected.append(method)
    return selected


def select_properties(original_type: type, options: TypeWrapperOptions) -> list[PropertyInfo]:
    """Properties to pass through; none unless include_properties names some."""
    return [
        prop
        for prop in get_properties(original_type)
        if matches_any(prop.name, options.include_properties)
    ]


# =============================================================================
# Generator
# =============================================================================


class TypeToTypeWrapper:
    """Turns classes into generated wrapper classes."""

    def __init__(
        self,
        cache: ValueCache | None = None,
        compiler_factory: Callable[[], ModuleCompiler] | None = None,
    ):
        self.cache = cache if cache is not None else get_default_cache()
        self.compiler_factory = compiler_factory or ModuleCompiler

    def create_type(
        self, original_type: type, options: TypeWrapperOptions | None = None
    ) -> type:
        """Generate, compile and load a wrapper class for original_type.

        Raises:
            TypeError: If original_type is not a class
            TypeGenerationError: If the generated source fails to compile or load
        """
        return self.generate(original_type, options).single_type()

    def generate(
        self, original_type: type, options: TypeWrapperOptions | None = None
    ) -> GeneratedModule:
        """Like create_type, but return the whole generated module."""
        if original_type is None:
            raise TypeError("original_type must not be None")
        if not isinstance(original_type, type):
            raise TypeError(f"original_type must be a class, got {original_type!r}")

        options = options or TypeWrapperOptions()
        type_name = options.resolved_type_name(original_type)
        log = logger.with_operation("generate").with_context(
            original=original_type.__qualname__, type_name=type_name
        )

        methods = select_methods(original_type, options)
        properties = select_properties(original_type, options)
        log.debug("selected members", methods=len(methods), properties=len(properties))

        compiler = options.compiler or self.compiler_factory()
        self._add_references(compiler, original_type, options, methods, properties)

        plan = ConversionPlan(options.conversion_rules, self.cache, type_name)
        converted = [plan.convert_method(method) for method in methods]
        for parameter in options.additional_constructor_parameters:
            plan.add_constructor_parameter(parameter.name, parameter.annotation)

        source = self.render(original_type, options, plan, converted, properties, compiler)
        if options.prettify_source:
            source = prettify(source)
        if options.include_source:
            source = embed_source(source)

        generated = compiler.compile(source, namespace={CACHE_GLOBAL: self.cache})
        log.info("generated wrapper", module=generated.name, methods=len(methods))
        return generated

    def _add_references(
        self,
        compiler: ModuleCompiler,
        original_type: type,
        options: TypeWrapperOptions,
        methods: list[MethodInfo],
        properties: list[PropertyInfo],
    ) -> None:
        compiler.add_reference(typing)
        compiler.add_reference(original_type)
        for method in methods:
            compiler.add_references(method.annotations())
        compiler.add_references(p.annotation for p in properties if p.annotation is not EMPTY)
        compiler.add_references(p.annotation for p in options.additional_constructor_parameters)
        compiler.add_references(options.bases)
        for reference in options.additional_references:
            compiler.add_reference(reference)

    def render(
        self,
        original_type: type,
        options: TypeWrapperOptions,
        plan: ConversionPlan,
        methods: list[ConvertedMethod],
        properties: list[PropertyInfo],
        compiler: ModuleCompiler,
    ) -> str:
        """Source of the wrapper module, with the source placeholder when included."""
        writer = SourceWriter()
        imports = compiler.module_names + options.additional_namespaces
        writer.lines(f"import {name}" for name in dict.fromkeys(imports))
        writer.line()
        writer.line(f"__namespace__ = {options.resolved_namespace_name(original_type)!r}")
        writer.line()
        writer.line()

        if options.type_decorators_generator is not None:
            for decorator in options.type_decorators_generator(options, original_type):
                writer.line(f"@{self._cached(decorator)}")

        header = f"class {plan.self_type_name}"
        if options.bases:
            header += f"({', '.join(qualified_name(base) for base in options.bases)})"

        hooks = _Hooks(
            construct=self._cached(options.on_constructor),
            before=self._cached(options.on_before_method),
            after=self._cached(options.on_after_method),
        )

        with writer.block(f"{header}:"):
            writer.line("__namespace__ = __namespace__")
            writer.line(f"_instance: {qualified_name(original_type)}")
            writer.line()

            self._write_constructor(writer, original_type, options, plan, hooks)
            plan.write_properties(writer)
            for prop in properties:
                _write_property(writer, plan, prop)
            for method in methods:
                self._write_method(writer, original_type, options, plan, method, hooks)

            if options.custom_code_generator is not None:
                code = options.custom_code_generator(options, original_type)
                writer.fragment(code, "Custom code")

            if options.include_source:
                writer.line(placeholder_statement())

        return writer.render()

    def _cached(self, value: Any) -> str | None:
        if value is None:
            return None
        return cached_value_expression(self.cache.add(value))

    def _write_constructor(
        self,
        writer: SourceWriter,
        original_type: type,
        options: TypeWrapperOptions,
        plan: ConversionPlan,
        hooks: _Hooks,
    ) -> None:
        provider = self._cached(functools.partial(options.factory, options, original_type))

        with writer.block(f"def __init__({plan.constructor_signature()}):"):
            if options.bases:
                writer.line("super().__init__()")
            writer.line(f"self._instance = {provider}()")
            plan.write_constructor_body(writer)

            if hooks.construct is not None:
                writer.line(f"{hooks.construct}(self._instance)")

            if options.on_constructor_custom_code_generator is not None:
                code = options.on_constructor_custom_code_generator(options, original_type)
                writer.fragment(code, "Custom constructor code")
        writer.line()

    def _write_method(
        self,
        writer: SourceWriter,
        original_type: type,
        options: TypeWrapperOptions,
        plan: ConversionPlan,
        converted: ConvertedMethod,
        hooks: _Hooks,
    ) -> None:
        method = converted.method
        name = options.method_name_generator(options, original_type, method)
        header = "async def" if method.is_async else "def"
        signature = f"{header} {name}({plan.method_signature(converted)})"
        if method.return_annotation is not EMPTY:
            signature += f" -> {plan.annotation(method.return_annotation)}"

        info = None
        if hooks.before is not None or hooks.after is not None:
            info = self._cached(method)

        with writer.block(f"{signature}:"):
            if hooks.before is not None:
                writer.line(f"{hooks.before}(self._instance, {info})")
            if options.on_before_method_custom_code_generator is not None:
                code = options.on_before_method_custom_code_generator(
                    options, original_type, method
                )
                writer.fragment(code, "Custom before method code")

            call = f"self._instance.{method.name}({converted.arguments()})"
            if method.is_async:
                call = f"await {call}"
            writer.line(f"result = {call}")

            if hooks.after is not None:
                writer.line(f"{hooks.after}(self._instance, {info})")
            if options.on_after_method_custom_code_generator is not None:
                code = options.on_after_method_custom_code_generator(
                    options, original_type, method
                )
                writer.fragment(code, "Custom after method code")

            if method.returns_value:
                writer.line("return result")
        writer.line()


@dataclass(frozen=True)
class _Hooks:
    """Source expressions fetching the hooks of one generation call."""

    construct: str | None = None
    before: str | None = None
    after: str | None = None


def _write_property(writer: SourceWriter, plan: ConversionPlan, prop: PropertyInfo) -> None:
    annotation = plan.annotation(prop.annotation)
    writer.line("@property")
    with writer.block(f"def {prop.name}(self) -> {annotation}:"):
        writer.line(f"return self._instance.{prop.name}")
    writer.line()

    if prop.writable:
        writer.line(f"@{prop.name}.setter")
        with writer.block(f"def {prop.name}(self, value: {annotation}) -> None:"):
            writer.line(f"self._instance.{prop.name} = value")
        writer.line()
