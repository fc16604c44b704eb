"""Configuration: defaults shared by compilers and generators."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from typeforge.callable_wrapper import (
    DEFAULT_METHOD_NAME,
    DEFAULT_NAMESPACE_NAME,
    DEFAULT_TYPE_NAME,
    CallableWrapperOptions,
)
from typeforge.compiler import ModuleCompiler
from typeforge.logging import LogFormat, configure_logging
from typeforge.type_wrapper import TypeWrapperOptions

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class CompilerConfig:
    """Configuration for module compilers."""

    persist: bool = True
    working_dir: Path | None = None
    warnings_as_errors: bool = False
    version: str | None = None

    def build(self) -> ModuleCompiler:
        """Build a ModuleCompiler from this configuration."""
        return ModuleCompiler(
            persist=self.persist,
            working_dir=self.working_dir,
            warnings_as_errors=self.warnings_as_errors,
            version=self.version,
        )


@dataclass
class NamingConfig:
    """Default names of generated modules, classes and methods."""

    type_name: str = DEFAULT_TYPE_NAME
    namespace_name: str = DEFAULT_NAMESPACE_NAME
    method_name: str = DEFAULT_METHOD_NAME


@dataclass
class SourceConfig:
    """What happens to generated source before it is compiled."""

    include: bool = True
    prettify: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    format: LogFormat = LogFormat.TEXT

    def apply(self) -> None:
        configure_logging(getattr(logging, self.level.upper()), self.format)


@dataclass
class ForgeConfig:
    """Main configuration for typeforge.

    Combines the compiler, naming, source and logging settings and builds
    the objects they configure. Supports a fluent builder pattern.
    """

    compiler: CompilerConfig = field(default_factory=CompilerConfig)
    naming: NamingConfig = field(default_factory=NamingConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    metadata: dict[str, Any] = field(default_factory=dict)

    def with_compiler(
        self,
        persist: bool | None = None,
        working_dir: Path | None = None,
        warnings_as_errors: bool | None = None,
        version: str | None = None,
    ) -> ForgeConfig:
        """Configure compilers."""
        if persist is not None:
            self.compiler.persist = persist
        if working_dir is not None:
            self.compiler.working_dir = working_dir
        if warnings_as_errors is not None:
            self.compiler.warnings_as_errors = warnings_as_errors
        if version is not None:
            self.compiler.version = version
        return self

    def with_naming(self, **kwargs: str) -> ForgeConfig:
        """Override default names (type_name, namespace_name, method_name)."""
        for key, value in kwargs.items():
            if not hasattr(self.naming, key):
                raise TypeError(f"Unknown naming setting: {key}")
            setattr(self.naming, key, value)
        return self

    def with_source(
        self, include: bool | None = None, prettify: bool | None = None
    ) -> ForgeConfig:
        """Configure source embedding and re-rendering."""
        if include is not None:
            self.source.include = include
        if prettify is not None:
            self.source.prettify = prettify
        return self

    def with_logging(
        self, level: str | None = None, log_format: LogFormat | None = None
    ) -> ForgeConfig:
        if level is not None:
            self.logging.level = level
        if log_format is not None:
            self.logging.format = log_format
        return self

    def validate(self) -> list[str]:
        """Validate the configuration.

        Returns a list of validation errors (empty if valid).
        """
        errors: list[str] = []

        for setting in ("type_name", "namespace_name", "method_name"):
            value = getattr(self.naming, setting)
            if setting != "namespace_name" and not value.isidentifier():
                errors.append(f"{setting} must be an identifier: {value!r}")
            elif not value:
                errors.append(f"{setting} must not be empty")

        if self.compiler.working_dir is not None and self.compiler.working_dir.is_file():
            errors.append(f"Working directory is a file: {self.compiler.working_dir}")

        if self.logging.level.upper() not in _LEVELS:
            errors.append(f"Unknown log level: {self.logging.level}")

        return errors

    def build_compiler(self) -> ModuleCompiler:
        """Build a ModuleCompiler from configuration."""
        return self.compiler.build()

    def callable_options(self, **overrides: Any) -> CallableWrapperOptions:
        """CallableWrapperOptions carrying the configured names."""
        settings: dict[str, Any] = {
            "type_name": self.naming.type_name,
            "namespace_name": self.naming.namespace_name,
            "method_name": self.naming.method_name,
        }
        settings.update(overrides)
        return CallableWrapperOptions(**settings)

    def type_options(self, **overrides: Any) -> TypeWrapperOptions:
        """TypeWrapperOptions carrying the configured names and source settings."""
        settings: dict[str, Any] = {
            "type_name": self.naming.type_name,
            "namespace_name": self.naming.namespace_name,
            "include_source": self.source.include,
            "prettify_source": self.source.prettify,
        }
        settings.update(overrides)
        return TypeWrapperOptions(**settings)

    def apply_logging(self) -> None:
        """Install the configured log handler on the typeforge logger."""
        self.logging.apply()
