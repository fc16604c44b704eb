"""Type-metadata introspection for source generation.

This module extracts what the generators need to know about a callable or a
class (parameters, return annotations, methods, properties) and renders
annotation objects as source text that evaluates back to the same type.
"""

from __future__ import annotations

import functools
import inspect
import types
import typing
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, get_args, get_origin, get_type_hints

from typeforge.errors import TypeGenerationError

EMPTY = inspect.Parameter.empty

_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


@dataclass(frozen=True)
class ParameterInfo:
    """A parameter of a wrapped callable or method.

    Attributes:
        name: Parameter name
        annotation: Resolved annotation, EMPTY when missing
        kind: inspect.Parameter kind
        default: Default value, EMPTY when required
        position: Index in the original parameter list
    """

    name: str
    annotation: Any = EMPTY
    kind: inspect._ParameterKind = inspect.Parameter.POSITIONAL_OR_KEYWORD
    default: Any = EMPTY
    position: int = 0

    @property
    def has_annotation(self) -> bool:
        return self.annotation is not EMPTY

    @property
    def has_default(self) -> bool:
        return self.default is not EMPTY

    @property
    def is_variadic(self) -> bool:
        return self.kind in _VARIADIC

    @property
    def is_keyword_only(self) -> bool:
        return self.kind is inspect.Parameter.KEYWORD_ONLY


class MethodKind(Enum):
    INSTANCE = "instance"
    STATIC = "static"
    CLASS = "class"


@dataclass(frozen=True)
class MethodInfo:
    """A wrapped callable, or a method declared on a class.

    Attributes:
        name: Function or method name
        function: The underlying function object
        parameters: Parameters, excluding self/cls
        return_annotation: Resolved return annotation, EMPTY when missing
        declaring_type: Class whose namespace declares the method
        kind: Instance, static or class method
        is_async: Whether calling it returns a coroutine
        is_abstract: Whether it is an abstract method
        type_params: PEP 695 type parameters of a generic function
    """

    name: str
    function: Callable[..., Any]
    parameters: tuple[ParameterInfo, ...] = ()
    return_annotation: Any = EMPTY
    declaring_type: type | None = None
    kind: MethodKind = MethodKind.INSTANCE
    is_async: bool = False
    is_abstract: bool = False
    type_params: tuple[Any, ...] = ()

    @property
    def is_public(self) -> bool:
        return not self.name.startswith("_")

    @property
    def is_generic(self) -> bool:
        return bool(self.type_params)

    @property
    def returns_value(self) -> bool:
        return not is_no_value(self.return_annotation)

    def annotations(self) -> list[Any]:
        """Parameter and return annotations that are present."""
        found = [p.annotation for p in self.parameters if p.has_annotation]
        if self.return_annotation is not EMPTY:
            found.append(self.return_annotation)
        return found


@dataclass(frozen=True)
class PropertyInfo:
    """A public property or annotated attribute of a class."""

    name: str
    annotation: Any = EMPTY
    writable: bool = True
    declaring_type: type | None = None


# =============================================================================
# Callables and methods
# =============================================================================


def introspect_callable(func: Callable[..., Any]) -> MethodInfo:
    """Describe an arbitrary callable value.

    Handles plain functions, closures, lambdas, bound methods,
    functools.partial objects and instances defining __call__.

    Raises:
        TypeGenerationError: If the callable has no inspectable signature
    """
    if not callable(func):
        raise TypeError(f"{func!r} is not callable")

    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError) as exc:
        raise TypeGenerationError(
            f"Couldn't get signature information from {func!r}"
        ) from exc

    hints = _type_hints(_annotated_target(func))
    name = getattr(func, "__name__", None) or type(func).__name__

    return MethodInfo(
        name=name,
        function=func,
        parameters=_parameters(sig, hints),
        return_annotation=hints.get("return", sig.return_annotation),
        is_async=_is_async(func),
    )


def introspect_member(owner: type, name: str, member: Any) -> MethodInfo | None:
    """Describe one entry of a class namespace, or None if it is not a method."""
    if isinstance(member, staticmethod):
        kind, function = MethodKind.STATIC, member.__func__
    elif isinstance(member, classmethod):
        kind, function = MethodKind.CLASS, member.__func__
    elif inspect.isfunction(member):
        kind, function = MethodKind.INSTANCE, member
    else:
        return None

    try:
        sig = inspect.signature(function)
    except (TypeError, ValueError):
        return None

    params = list(sig.parameters.values())
    if kind is not MethodKind.STATIC and params and not _is_variadic(params[0]):
        sig = sig.replace(parameters=params[1:])

    hints = _type_hints(function)

    return MethodInfo(
        name=name,
        function=function,
        parameters=_parameters(sig, hints),
        return_annotation=hints.get("return", sig.return_annotation),
        declaring_type=owner,
        kind=kind,
        is_async=inspect.iscoroutinefunction(function),
        is_abstract=getattr(member, "__isabstractmethod__", False),
        type_params=tuple(getattr(function, "__type_params__", ())),
    )


def get_methods(cls: type) -> list[MethodInfo]:
    """Methods declared directly in a class namespace, in declaration order."""
    methods = []
    for name, member in vars(cls).items():
        method = introspect_member(cls, name, member)
        if method is not None:
            methods.append(method)
    return methods


def get_properties(cls: type) -> list[PropertyInfo]:
    """Public properties and annotated attributes across the MRO.

    Subclasses override entries of their bases; order follows first
    declaration, base classes first.
    """
    found: dict[str, PropertyInfo] = {}
    frozen = _is_frozen_dataclass(cls)

    for klass in reversed(cls.__mro__):
        if klass is object:
            continue

        hints = _type_hints(klass)
        own = inspect.get_annotations(klass)
        for name in own:
            if name.startswith("_"):
                continue
            annotation = hints.get(name, own[name])
            if get_origin(annotation) is typing.ClassVar:
                continue
            found[name] = PropertyInfo(name, annotation, not frozen, klass)

        for name, member in vars(klass).items():
            if name.startswith("_") or not isinstance(member, property):
                continue
            annotation = EMPTY
            if member.fget is not None:
                annotation = _type_hints(member.fget).get("return", EMPTY)
            found[name] = PropertyInfo(name, annotation, member.fset is not None, klass)

    return list(found.values())


def _parameters(sig: inspect.Signature, hints: dict[str, Any]) -> tuple[ParameterInfo, ...]:
    return tuple(
        ParameterInfo(
            name=name,
            annotation=hints.get(name, param.annotation),
            kind=param.kind,
            default=param.default,
            position=index,
        )
        for index, (name, param) in enumerate(sig.parameters.items())
    )


def _annotated_target(func: Any) -> Any:
    while isinstance(func, functools.partial):
        func = func.func
    if inspect.ismethod(func):
        return func.__func__
    if inspect.isfunction(func) or inspect.isbuiltin(func) or isinstance(func, type):
        return func
    return type(func).__call__


def _is_async(func: Any) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    return inspect.iscoroutinefunction(_annotated_target(func))


def _is_variadic(param: inspect.Parameter) -> bool:
    return param.kind in _VARIADIC


def _is_frozen_dataclass(cls: type) -> bool:
    params = getattr(cls, "__dataclass_params__", None)
    return bool(params is not None and params.frozen)


def _type_hints(obj: Any) -> dict[str, Any]:
    # Unresolvable forward references fall back to the raw annotations.
    try:
        return get_type_hints(obj)
    except (NameError, TypeError, AttributeError):
        return {}


# =============================================================================
# Annotation rendering
# =============================================================================


def is_no_value(annotation: Any) -> bool:
    """Whether an annotation means the callable returns nothing."""
    return annotation is None or annotation is type(None)


def type_arguments(annotation: Any) -> Iterator[Any]:
    """Generic arguments of an annotation, flattening Callable parameter lists."""
    for arg in get_args(annotation):
        if isinstance(arg, list | tuple):
            yield from arg
        else:
            yield arg


def declaring_module_name(annotation: Any) -> str | None:
    """Module that must be imported to name an annotation, if any."""
    if isinstance(annotation, type | typing.TypeAliasType) or hasattr(
        annotation, "__supertype__"
    ):
        return annotation.__module__
    return None


def qualified_name(obj: Any) -> str:
    """Import-path name of a class or alias; builtins stay unqualified."""
    module = getattr(obj, "__module__", None)
    name = getattr(obj, "__qualname__", None) or obj.__name__
    if module in (None, "builtins"):
        return name
    return f"{module}.{name}"


def friendly_name(annotation: Any, self_type_name: str | None = None) -> str:
    """Render an annotation as source text.

    Generic aliases are rebuilt recursively as origin[arg, ...] so nested
    generics such as dict[str, list[Product]] come out fully qualified.

    Args:
        annotation: The annotation object
        self_type_name: Generated class name to substitute for a TypeVar named T
    """
    if annotation is EMPTY or annotation is Any:
        return "typing.Any"
    if is_no_value(annotation):
        return "None"
    if annotation is Ellipsis:
        return "..."
    if isinstance(annotation, str):
        return repr(annotation)
    if isinstance(annotation, typing.TypeVar):
        if self_type_name and annotation.__name__ == "T":
            return repr(self_type_name)
        return "typing.Any"
    if isinstance(annotation, list):
        return "[" + ", ".join(friendly_name(a, self_type_name) for a in annotation) + "]"

    origin = get_origin(annotation)
    if origin is not None:
        args = get_args(annotation)
        if origin is typing.Literal:
            return f"typing.Literal[{', '.join(repr(a) for a in args)}]"
        if origin is typing.Union or origin is types.UnionType:
            base = "typing.Union"
        elif origin is typing.ClassVar:
            base = "typing.ClassVar"
        elif origin is typing.Annotated:
            return friendly_name(args[0], self_type_name)
        else:
            base = qualified_name(origin)
        if not args:
            return base
        return f"{base}[{', '.join(friendly_name(a, self_type_name) for a in args)}]"

    if declaring_module_name(annotation) is not None:
        return qualified_name(annotation)

    return repr(annotation)
