"""Toolchain spec loading.

Specs are authored as YAML (or JSON) files. A set of specs ships with the
package; operators can add or override specs from an extra directory.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from crossdeploy.errors import UnknownTargetError
from crossdeploy.toolchain.schema import ToolchainSpec

logger = logging.getLogger(__name__)

# Specs shipped with the package
BUNDLED_SPEC_DIR = Path(__file__).parent / "specs"

SPEC_SUFFIXES = (".yaml", ".yml", ".json")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_toolchain_spec(path: Path) -> ToolchainSpec:
    """Load and validate a toolchain spec from a YAML or JSON file.

    Args:
        path: Path to the spec file.

    Returns:
        Validated ToolchainSpec instance.

    Raises:
        ValueError: If file extension is not supported.
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If data does not match schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    return ToolchainSpec.model_validate(data)


def _load_dir(directory: Path) -> dict[str, ToolchainSpec]:
    specs: dict[str, ToolchainSpec] = {}
    if not directory.is_dir():
        return specs
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in SPEC_SUFFIXES:
            continue
        spec = load_toolchain_spec(path)
        specs[spec.name] = spec
    return specs


def list_toolchain_specs(extra_dir: Path | None = None) -> dict[str, ToolchainSpec]:
    """List all known toolchain specs keyed by name.

    Specs in `extra_dir` override bundled specs with the same name.

    Args:
        extra_dir: Optional directory of additional spec files.

    Returns:
        Mapping of spec name to ToolchainSpec.
    """
    specs = _load_dir(BUNDLED_SPEC_DIR)
    if extra_dir is not None:
        for name, spec in _load_dir(extra_dir).items():
            if name in specs:
                logger.info("Spec %s overridden from %s", name, extra_dir)
            specs[name] = spec
    return specs


def get_toolchain_spec(name: str, extra_dir: Path | None = None) -> ToolchainSpec:
    """Look up a toolchain spec by name.

    Raises:
        UnknownTargetError: If no spec has that name.
    """
    specs = list_toolchain_specs(extra_dir)
    try:
        return specs[name]
    except KeyError:
        raise UnknownTargetError(name, list(specs)) from None


def spec_to_yaml_string(spec: ToolchainSpec) -> str:
    """Render a spec as YAML."""
    data = spec.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


__all__ = [
    "BUNDLED_SPEC_DIR",
    "get_toolchain_spec",
    "list_toolchain_specs",
    "load_json",
    "load_toolchain_spec",
    "load_yaml",
    "spec_to_yaml_string",
]
