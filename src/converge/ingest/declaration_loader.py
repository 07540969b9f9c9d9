"""Load and validate declaration files (YAML or JSON)."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
import yaml
from pydantic import ValidationError as PydanticValidationError
from ..utils.errors import DeclarationLoadError
from ..utils.logging import get_logger
from .models import DeclarationSet

logger = get_logger("ingest.declaration_loader")

TOP_LEVEL_KEYS = {"variables", "resources"}


def load_declarations(paths: Iterable[str], variables: Optional[Dict[str, Any]] = None) -> DeclarationSet:
    """
    Load one or more declaration files into a single DeclarationSet.

    Args:
        paths: Paths to YAML or JSON declaration files
        variables: Variable overrides (e.g. from --var flags)

    Returns:
        Validated DeclarationSet

    Raises:
        DeclarationLoadError: If a file cannot be loaded or is invalid
    """
    merged_variables: Dict[str, Any] = {}
    merged_resources: List[Dict[str, Any]] = []
    path_list = list(paths)

    if not path_list:
        raise DeclarationLoadError("No declaration files given. Pass at least one file with -f/--file.")

    for path in path_list:
        data = _read_file(Path(path))
        file_variables, file_resources = _split_sections(data, path)
        merged_variables.update(file_variables)
        merged_resources.extend(file_resources)

    if variables:
        unknown = sorted(set(variables) - set(merged_variables))
        if unknown:
            logger.warning(f"Variable overrides not declared in any file: {', '.join(unknown)}")
        merged_variables.update(variables)

    try:
        declarations = DeclarationSet(variables=merged_variables, resources=merged_resources)
    except PydanticValidationError as e:
        raise DeclarationLoadError(f"Invalid declarations: {e}")

    logger.info(
        f"Loaded {len(declarations.resources)} resource declarations "
        f"and {len(declarations.variables)} variables from {len(path_list)} file(s)"
    )
    return declarations


def parse_var_overrides(pairs: Iterable[str]) -> Dict[str, Any]:
    """
    Parse ``key=value`` strings into a variables dictionary.

    Values are decoded as YAML scalars, so ``true`` becomes a bool and ``3`` an int.

    Raises:
        DeclarationLoadError: If a pair is not in key=value form
    """
    overrides: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise DeclarationLoadError(f"Invalid variable override '{pair}', expected key=value")
        key, raw = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise DeclarationLoadError(f"Invalid variable override '{pair}', empty name")
        try:
            overrides[key] = yaml.safe_load(raw) if raw.strip() else ""
        except yaml.YAMLError:
            overrides[key] = raw
    return overrides


def _read_file(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON file into a dictionary."""
    if not path.exists():
        raise DeclarationLoadError(
            f"Declaration file not found: {path}. "
            "Please check the file path and ensure the file exists."
        )

    if not path.is_file():
        raise DeclarationLoadError(f"Path is not a file: {path}.")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except json.JSONDecodeError as e:
        raise DeclarationLoadError(f"Invalid JSON in declaration file {path}: {e}")
    except yaml.YAMLError as e:
        raise DeclarationLoadError(f"Invalid YAML in declaration file {path}: {e}")
    except OSError as e:
        raise DeclarationLoadError(f"Error reading declaration file {path}: {e}")

    if data is None:
        logger.warning(f"Declaration file {path} is empty")
        return {}

    if not isinstance(data, dict):
        raise DeclarationLoadError(f"Declaration file {path} must contain a mapping at the top level")

    return data


def _split_sections(data: Dict[str, Any], source: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Extract variables and a flat resource list from one file's contents."""
    unexpected = sorted(set(data) - TOP_LEVEL_KEYS)
    if unexpected:
        raise DeclarationLoadError(
            f"Unexpected top-level keys in {source}: {', '.join(unexpected)}. "
            "Allowed keys: variables, resources"
        )

    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        raise DeclarationLoadError(f"'variables' in {source} must be a mapping")

    resources = data.get("resources") or []
    if isinstance(resources, dict):
        resources = _flatten_resource_mapping(resources, source)
    elif not isinstance(resources, list):
        raise DeclarationLoadError(f"'resources' in {source} must be a list or a mapping of type -> name -> body")

    for idx, entry in enumerate(resources):
        if not isinstance(entry, dict):
            raise DeclarationLoadError(f"Resource at index {idx} in {source} must be a mapping")

    return variables, resources


def _flatten_resource_mapping(resources: Dict[str, Any], source: str) -> List[Dict[str, Any]]:
    """Turn ``{type: {name: body}}`` into a list of declaration entries."""
    flat = []
    for resource_type, by_name in resources.items():
        if not isinstance(by_name, dict):
            raise DeclarationLoadError(f"Resources of type '{resource_type}' in {source} must be a mapping of name -> body")
        for name, body in by_name.items():
            body = dict(body or {})
            body.setdefault("type", resource_type)
            body.setdefault("name", name)
            flat.append(body)
    return flat
