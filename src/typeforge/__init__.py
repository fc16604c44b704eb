"""typeforge: runtime type synthesis.

Generates Python source for new classes, compiles it with the interpreter's
own compiler and loads the result into an isolated execution context:
- Callable wrappers: a class whose method forwards to any callable
- Type wrappers: a class forwarding selected members of an existing class,
  with interception hooks around construction and every call
- ModuleCompiler: compile arbitrary source against resolved references

Example:
    from typeforge import CallableToTypeWrapper, TypeToTypeWrapper, TypeWrapperOptions

    Adder = CallableToTypeWrapper().create_type(lambda a, b: a + b)
    Adder().run(1, 2)

    options = TypeWrapperOptions(include_methods=["hello*"])
    Wrapped = TypeToTypeWrapper().create_type(Greeter, options)
"""

from typeforge.callable_wrapper import CallableToTypeWrapper, CallableWrapperOptions
from typeforge.compiler import Diagnostic, GeneratedModule, ModuleCompiler, Severity
from typeforge.config import ForgeConfig
from typeforge.context import (
    ExecutionContext,
    get_default_context_factory,
    set_default_context_factory,
)
from typeforge.conversion import ConversionRule, ParameterConversion, Route
from typeforge.errors import (
    CompilationError,
    ExportError,
    ModuleLoadError,
    ReferenceResolutionError,
    TypeGenerationError,
    ValueNotFoundError,
)
from typeforge.introspect import MethodInfo, ParameterInfo, PropertyInfo
from typeforge.references import DependencyResolver, Reference, ReferenceSet
from typeforge.type_wrapper import (
    AdditionalParameter,
    ConstructHook,
    MethodHook,
    TypeToTypeWrapper,
    TypeWrapperOptions,
)
from typeforge.value_cache import ValueCache, get_default_cache, set_default_cache

__all__ = [
    "AdditionalParameter",
    "CallableToTypeWrapper",
    "CallableWrapperOptions",
    "CompilationError",
    "ConstructHook",
    "ConversionRule",
    "DependencyResolver",
    "Diagnostic",
    "ExecutionContext",
    "ExportError",
    "ForgeConfig",
    "GeneratedModule",
    "MethodHook",
    "MethodInfo",
    "ModuleCompiler",
    "ModuleLoadError",
    "ParameterConversion",
    "ParameterInfo",
    "PropertyInfo",
    "Reference",
    "ReferenceResolutionError",
    "ReferenceSet",
    "Route",
    "Severity",
    "TypeGenerationError",
    "TypeToTypeWrapper",
    "TypeWrapperOptions",
    "ValueCache",
    "ValueNotFoundError",
    "get_default_cache",
    "get_default_context_factory",
    "set_default_cache",
    "set_default_context_factory",
]
