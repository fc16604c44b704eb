"""Parameter conversion pipeline.

Wrapped callables and methods often take arguments the caller would rather
supply once: a connection passed to every call, a setting that should be a
property of the generated class. Conversion rules decide, parameter by
parameter, where each argument of the forwarded call comes from:

- Route.METHOD: a parameter of the generated method (the default)
- Route.CONSTRUCTOR: a parameter of the generated __init__, stored as `_name`
- Route.PROPERTY: a read/write property of the generated class

Usage:
    rules = [
        ConversionRule.for_names(["connection"], ParameterConversion.to_constructor()),
        ConversionRule.for_names(["retries"], ParameterConversion.to_property()),
    ]
    plan = ConversionPlan(rules, cache)
    converted = plan.convert_method(method_info)
"""

from __future__ import annotations

import inspect
import keyword
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from typeforge.introspect import EMPTY, MethodInfo, ParameterInfo, friendly_name
from typeforge.logging import get_logger
from typeforge.source import SourceWriter
from typeforge.value_cache import ValueCache

logger = get_logger("conversion")

# Defaults of these exact types are written into source with repr().
LITERAL_TYPES = (type(None), bool, int, float, complex, str, bytes)

CACHE_GLOBAL = "_value_cache"

# Module alias generated bodies use for typing, so parameters named `typing`
# cannot hide it.
TYPING_ALIAS = "__typeforge_typing__"

# Names generated method and constructor bodies rely on.
RESERVED_NAMES = frozenset({"self", "super", CACHE_GLOBAL, TYPING_ALIAS})


class Route(Enum):
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    PROPERTY = "property"


@dataclass(frozen=True)
class ParameterConversion:
    """Where a parameter goes, and the name it goes by there."""

    route: Route = Route.METHOD
    renamed_to: str | None = None

    @classmethod
    def to_method(cls, renamed_to: str | None = None) -> ParameterConversion:
        return cls(Route.METHOD, renamed_to)

    @classmethod
    def to_constructor(cls, renamed_to: str | None = None) -> ParameterConversion:
        return cls(Route.CONSTRUCTOR, renamed_to)

    @classmethod
    def to_property(cls, renamed_to: str | None = None) -> ParameterConversion:
        return cls(Route.PROPERTY, renamed_to)


@dataclass(frozen=True)
class ConversionRule:
    """A predicate over parameters and the conversion applied when it matches."""

    can_handle: Callable[[ParameterInfo], bool]
    handle: Callable[[ParameterInfo], ParameterConversion]

    def __post_init__(self) -> None:
        if self.can_handle is None:
            raise TypeError("ConversionRule requires a can_handle callable")
        if self.handle is None:
            raise TypeError("ConversionRule requires a handle callable")

    @classmethod
    def for_names(
        cls, names: Iterable[str], conversion: ParameterConversion
    ) -> ConversionRule:
        """Rule applying one fixed conversion to parameters with the given names."""
        wanted = frozenset(names)
        return cls(lambda p: p.name in wanted, lambda p: conversion)

    @classmethod
    def for_type(cls, annotation: Any, conversion: ParameterConversion) -> ConversionRule:
        """Rule applying one fixed conversion to parameters with the given annotation."""
        return cls(lambda p: p.annotation == annotation, lambda p: conversion)


def title_case_property(name: str) -> str:
    """Property name for a parameter routed to a property.

    `count` becomes `Count`; a name already in title case gets a `Prop`
    suffix so it cannot collide with the parameter.
    """
    title = name.title()
    if title == name:
        return f"{title}Prop"
    return title


def is_literal_default(value: Any) -> bool:
    if type(value) not in LITERAL_TYPES:
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, complex):
        return math.isfinite(value.real) and math.isfinite(value.imag)
    return True


def cached_value_expression(identifier: Any) -> str:
    """Source expression that fetches a cached value inside generated code."""
    return f"{CACHE_GLOBAL}.get({str(identifier)!r})"


@dataclass(frozen=True)
class ConstructorParameter:
    """A parameter of the generated __init__, kept in a private field."""

    name: str
    annotation: Any = EMPTY

    @property
    def field(self) -> str:
        return f"_{self.name}"


@dataclass(frozen=True)
class RoutedProperty:
    """A read/write property of the generated class backed by a private field."""

    name: str
    annotation: Any = EMPTY
    default: Any = EMPTY

    @property
    def field(self) -> str:
        return f"_{self.name}"


@dataclass(frozen=True)
class ConvertedParameter:
    """One parameter of the forwarded call after conversion."""

    parameter: ParameterInfo
    route: Route
    name: str

    @property
    def expression(self) -> str:
        """Expression supplying the argument inside the generated method."""
        if self.route is Route.CONSTRUCTOR:
            return f"self._{self.name}"
        if self.route is Route.PROPERTY:
            return f"self.{self.name}"
        return self.name

    def argument(self) -> str:
        """The argument as written in the forwarded call."""
        kind = self.parameter.kind
        if kind is inspect.Parameter.VAR_POSITIONAL:
            return f"*{self.name}"
        if kind is inspect.Parameter.VAR_KEYWORD:
            return f"**{self.name}"
        if self.parameter.is_keyword_only:
            return f"{self.parameter.name}={self.expression}"
        return self.expression


@dataclass(frozen=True)
class ConvertedMethod:
    method: MethodInfo
    parameters: tuple[ConvertedParameter, ...]

    @property
    def method_parameters(self) -> list[ConvertedParameter]:
        return [p for p in self.parameters if p.route is Route.METHOD]

    def arguments(self) -> str:
        return ", ".join(p.argument() for p in self.parameters)


class ConversionPlan:
    """Applies conversion rules across the methods of one generated class.

    Constructor parameters and routed properties are shared by every method
    of the class; a name seen twice keeps its first declaration.
    """

    def __init__(
        self,
        rules: Sequence[ConversionRule] = (),
        cache: ValueCache | None = None,
        self_type_name: str | None = None,
    ):
        self.rules = list(rules)
        self.self_type_name = self_type_name
        self._cache = cache
        self._constructor: dict[str, ConstructorParameter] = {}
        self._properties: dict[str, RoutedProperty] = {}

    @property
    def constructor_parameters(self) -> list[ConstructorParameter]:
        return list(self._constructor.values())

    @property
    def properties(self) -> list[RoutedProperty]:
        return list(self._properties.values())

    def add_constructor_parameter(self, name: str, annotation: Any = EMPTY) -> None:
        _check_identifier(name)
        _check_not_reserved(name)
        self._constructor.setdefault(name, ConstructorParameter(name, annotation))

    def convert(self, parameter: ParameterInfo) -> ParameterConversion:
        """Conversion chosen by the first matching rule; METHOD when none match."""
        for rule in self.rules:
            if rule.can_handle(parameter):
                return rule.handle(parameter)
        return ParameterConversion()

    def convert_method(self, method: MethodInfo) -> ConvertedMethod:
        converted = []
        for parameter in method.parameters:
            # Variadic parameters are never offered to rules.
            if parameter.is_variadic:
                _check_not_reserved(parameter.name)
                converted.append(ConvertedParameter(parameter, Route.METHOD, parameter.name))
                continue

            conversion = self.convert(parameter)
            name = conversion.renamed_to or parameter.name
            _check_identifier(name)

            if conversion.route is Route.METHOD:
                _check_not_reserved(name)
            elif conversion.route is Route.CONSTRUCTOR:
                self.add_constructor_parameter(name, parameter.annotation)
            elif conversion.route is Route.PROPERTY:
                name = title_case_property(name)
                self._properties.setdefault(
                    name, RoutedProperty(name, parameter.annotation, parameter.default)
                )

            if conversion.route is not Route.METHOD or name != parameter.name:
                logger.debug(
                    "converted parameter",
                    method=method.name,
                    parameter=parameter.name,
                    route=conversion.route.value,
                    name=name,
                )
            converted.append(ConvertedParameter(parameter, conversion.route, name))

        return ConvertedMethod(method, tuple(converted))

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def annotation(self, annotation: Any) -> str:
        return friendly_name(annotation, self.self_type_name)

    def default(self, value: Any) -> str:
        """Source for a default value: a literal, or a lookup of the cached value."""
        if is_literal_default(value):
            return repr(value)
        if self._cache is None:
            raise ValueError(f"Default {value!r} is not a literal and no value cache is set")
        return cached_value_expression(self._cache.add(value))

    def method_signature(self, converted: ConvertedMethod) -> str:
        """Parameter list of the generated method, including self."""
        parts = ["self"]
        params = converted.method_parameters
        positional_only = [
            p for p in params if p.parameter.kind is inspect.Parameter.POSITIONAL_ONLY
        ]
        has_var_positional = any(
            p.parameter.kind is inspect.Parameter.VAR_POSITIONAL for p in params
        )
        star_written = False

        for p in params:
            kind = p.parameter.kind
            if kind is inspect.Parameter.VAR_POSITIONAL:
                parts.append(f"*{p.name}: {self.annotation(p.parameter.annotation)}")
                continue
            if kind is inspect.Parameter.VAR_KEYWORD:
                parts.append(f"**{p.name}: {self.annotation(p.parameter.annotation)}")
                continue
            keyword_only = kind is inspect.Parameter.KEYWORD_ONLY
            if keyword_only and not has_var_positional and not star_written:
                parts.append("*")
                star_written = True

            text = f"{p.name}: {self.annotation(p.parameter.annotation)}"
            if p.parameter.has_default:
                text += f" = {self.default(p.parameter.default)}"
            parts.append(text)

            if positional_only and p is positional_only[-1]:
                parts.append("/")

        return ", ".join(parts)

    def constructor_signature(self) -> str:
        parts = ["self"]
        parts.extend(
            f"{c.name}: {self.annotation(c.annotation)}" for c in self._constructor.values()
        )
        return ", ".join(parts)

    def write_constructor_body(self, writer: SourceWriter) -> None:
        """Store constructor arguments and initialise property backing fields."""
        for parameter in self._constructor.values():
            writer.line(f"self.{parameter.field} = {parameter.name}")
        for prop in self._properties.values():
            value = "None" if prop.default is EMPTY else self.default(prop.default)
            writer.line(f"self.{prop.field}: {self.annotation(prop.annotation)} = {value}")

    def write_properties(self, writer: SourceWriter) -> None:
        for prop in self._properties.values():
            annotation = self.annotation(prop.annotation)
            writer.line("@property")
            with writer.block(f"def {prop.name}(self) -> {annotation}:"):
                writer.line(f"return self.{prop.field}")
            writer.line()
            writer.line(f"@{prop.name}.setter")
            with writer.block(f"def {prop.name}(self, value: {annotation}) -> None:"):
                writer.line(f"self.{prop.field} = value")
            writer.line()


def _check_identifier(name: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name):
        raise ValueError(f"Converted parameter name must be an identifier, got {name!r}")


def _check_not_reserved(name: str) -> None:
    if name in RESERVED_NAMES:
        raise ValueError(
            f"Parameter name {name!r} is reserved by generated code; "
            "rename it with a conversion rule"
        )
