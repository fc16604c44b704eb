"""TOML-based configuration for typeforge.

Usage:
    from typeforge.toml_config import load_toml_config, find_config_file

    # Load from a specific file
    config = load_toml_config(Path("typeforge.toml"))

    # Auto-discover config file in directory hierarchy
    config_path = find_config_file(Path.cwd())
    if config_path:
        config = load_toml_config(config_path)

Example typeforge.toml:
    [compiler]
    persist = false
    working_dir = ".typeforge"
    warnings_as_errors = true

    [naming]
    type_name = "Wrapper"
    method_name = "invoke"

    [source]
    include = true
    prettify = false

    [logging]
    level = "DEBUG"
    format = "json"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from typeforge.config import ForgeConfig, NamingConfig
from typeforge.logging import LogFormat

# Config file names to search for (in order of preference)
CONFIG_FILE_NAMES = ["typeforge.toml", ".typeforgerc.toml", "pyproject.toml"]


def find_config_file(
    start_dir: Path,
    config_names: list[str] | None = None,
) -> Path | None:
    """Find a config file by searching up the directory hierarchy.

    Args:
        start_dir: Directory to start searching from
        config_names: List of config file names to search for (default: CONFIG_FILE_NAMES)

    Returns:
        Path to the config file, or None if not found
    """
    config_names = config_names or CONFIG_FILE_NAMES
    current = start_dir.resolve()

    while True:
        for name in config_names:
            config_path = current / name
            if config_path.exists():
                # pyproject.toml only counts with a [tool.typeforge] section
                if name == "pyproject.toml":
                    if _has_typeforge_section(config_path):
                        return config_path
                else:
                    return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _has_typeforge_section(pyproject_path: Path) -> bool:
    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return False
    return "typeforge" in data.get("tool", {})


def load_toml_config(path: Path) -> ForgeConfig:
    """Load a ForgeConfig from a TOML file.

    Supports typeforge.toml (full file) and pyproject.toml (under [tool.typeforge]).

    Args:
        path: Path to the config file

    Returns:
        Configured ForgeConfig instance
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        data = tomllib.load(f)

    if path.name == "pyproject.toml":
        if "typeforge" not in data.get("tool", {}):
            raise ValueError(f"No [tool.typeforge] section in {path}")
        data = data["tool"]["typeforge"]

    return _build_config_from_dict(data, path.parent)


def _build_config_from_dict(data: dict[str, Any], project_root: Path) -> ForgeConfig:
    """Build a ForgeConfig from a dictionary of settings.

    Relative working directories are resolved against project_root.
    """
    config = ForgeConfig()

    if "compiler" in data:
        compiler = data["compiler"]
        if "persist" in compiler:
            config.compiler.persist = compiler["persist"]
        if "working_dir" in compiler:
            config.compiler.working_dir = project_root / compiler["working_dir"]
        if "warnings_as_errors" in compiler:
            config.compiler.warnings_as_errors = compiler["warnings_as_errors"]
        if "version" in compiler:
            config.compiler.version = str(compiler["version"])

    if "naming" in data:
        naming = data["naming"]
        for key in ("type_name", "namespace_name", "method_name"):
            if key in naming:
                setattr(config.naming, key, naming[key])

    if "source" in data:
        source = data["source"]
        if "include" in source:
            config.source.include = source["include"]
        if "prettify" in source:
            config.source.prettify = source["prettify"]

    if "logging" in data:
        log = data["logging"]
        if "level" in log:
            config.logging.level = log["level"]
        if "format" in log:
            config.logging.format = LogFormat(log["format"])

    if "metadata" in data:
        config.metadata.update(data["metadata"])

    return config


def merge_configs(base: ForgeConfig, override: ForgeConfig) -> ForgeConfig:
    """Merge two configs, with override taking precedence.

    This is useful for per-directory overrides where a subdirectory
    can override settings from a parent config.

    Args:
        base: Base configuration
        override: Override configuration

    Returns:
        Merged configuration
    """
    merged = ForgeConfig()
    defaults = NamingConfig()

    # Compiler - override wins; unset paths and versions fall back to base
    merged.compiler.persist = override.compiler.persist
    merged.compiler.working_dir = override.compiler.working_dir or base.compiler.working_dir
    merged.compiler.warnings_as_errors = override.compiler.warnings_as_errors
    merged.compiler.version = override.compiler.version or base.compiler.version

    # Naming - names left at their defaults do not override
    for key in ("type_name", "namespace_name", "method_name"):
        value = getattr(override.naming, key)
        if value == getattr(defaults, key):
            value = getattr(base.naming, key)
        setattr(merged.naming, key, value)

    merged.source.include = override.source.include
    merged.source.prettify = override.source.prettify

    merged.logging.level = override.logging.level
    merged.logging.format = override.logging.format

    merged.metadata = {**base.metadata, **override.metadata}

    return merged


def config_to_toml(config: ForgeConfig) -> str:
    """Convert a ForgeConfig to TOML format.

    Args:
        config: Configuration to convert

    Returns:
        TOML-formatted string
    """
    lines = []

    lines.append("[compiler]")
    lines.append(f"persist = {str(config.compiler.persist).lower()}")
    if config.compiler.working_dir is not None:
        lines.append(f'working_dir = "{config.compiler.working_dir.as_posix()}"')
    lines.append(f"warnings_as_errors = {str(config.compiler.warnings_as_errors).lower()}")
    if config.compiler.version is not None:
        lines.append(f'version = "{config.compiler.version}"')
    lines.append("")

    lines.append("[naming]")
    lines.append(f'type_name = "{config.naming.type_name}"')
    lines.append(f'namespace_name = "{config.naming.namespace_name}"')
    lines.append(f'method_name = "{config.naming.method_name}"')
    lines.append("")

    lines.append("[source]")
    lines.append(f"include = {str(config.source.include).lower()}")
    lines.append(f"prettify = {str(config.source.prettify).lower()}")
    lines.append("")

    lines.append("[logging]")
    lines.append(f'level = "{config.logging.level}"')
    lines.append(f'format = "{config.logging.format.value}"')
    lines.append("")

    return "\n".join(lines)
