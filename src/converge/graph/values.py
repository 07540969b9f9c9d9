"""Tagged attribute values: literals, references, templates, lists and mappings.

Declared attribute data is parsed once into this tagged form. ``${var.x}``
expressions are substituted during parsing; ``${type.name.attr}`` expressions
become references that are resolved later through a single recursive pass.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence, Tuple, Union
from ..ingest.models import ResourceAddress
from ..utils.errors import ReferenceResolutionError, ValidationError

EXPRESSION_PATTERN = re.compile(r"\$\{([^{}]+)\}")


class _Unknown:
    """Sentinel for values that are only known after apply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Unknown, ())


UNKNOWN = _Unknown()


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    address: ResourceAddress
    path: Tuple[str, ...]

    def __str__(self) -> str:
        return "${" + ".".join((self.address.type, self.address.name) + self.path) + "}"


@dataclass(frozen=True)
class Template:
    parts: Tuple[Union[str, Reference], ...]


@dataclass(frozen=True)
class ListValue:
    items: Tuple["Value", ...]


@dataclass(frozen=True)
class MappingValue:
    items: Tuple[Tuple[str, "Value"], ...]


Value = Union[Literal, Reference, Template, ListValue, MappingValue]
Lookup = Callable[[ResourceAddress, Tuple[str, ...]], Any]


def parse_value(raw: Any, variables: Optional[Mapping[str, Any]] = None) -> Value:
    """
    Parse raw declaration data into the tagged value form.

    Args:
        raw: Attribute data as loaded from YAML/JSON
        variables: Declared variables available to ``${var.name}``

    Returns:
        Parsed Value

    Raises:
        ValidationError: If an expression is malformed or names an undeclared variable
    """
    variables = variables or {}
    if isinstance(raw, dict):
        return MappingValue(tuple((str(k), parse_value(v, variables)) for k, v in raw.items()))
    if isinstance(raw, (list, tuple)):
        return ListValue(tuple(parse_value(item, variables) for item in raw))
    if isinstance(raw, str):
        return _parse_string(raw, variables)
    return Literal(raw)


def parse_attributes(attributes: Mapping[str, Any], variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Value]:
    """Parse a top-level attribute mapping, keeping the mapping shape."""
    return {str(key): parse_value(raw, variables) for key, raw in attributes.items()}


def substitute_variables(raw: Any, variables: Mapping[str, Any]) -> Any:
    """Evaluate a scalar that may only reference variables (used for presence gates)."""
    value = parse_value(raw, variables)
    if isinstance(value, Literal):
        return value.value
    raise ValidationError(f"Expression '{raw}' may only reference variables")


def _parse_string(raw: str, variables: Mapping[str, Any]) -> Value:
    matches = list(EXPRESSION_PATTERN.finditer(raw))
    if not matches:
        return Literal(raw)

    if len(matches) == 1 and matches[0].group(0) == raw:
        return _parse_expression(matches[0].group(1), variables)

    parts = []
    cursor = 0
    for match in matches:
        if match.start() > cursor:
            parts.append(raw[cursor:match.start()])
        expression = _parse_expression(match.group(1), variables)
        if isinstance(expression, Literal):
            parts.append(_stringify(expression.value))
        else:
            parts.append(expression)
        cursor = match.end()
    if cursor < len(raw):
        parts.append(raw[cursor:])

    if all(isinstance(part, str) for part in parts):
        return Literal("".join(parts))
    return Template(tuple(_merge_adjacent_text(parts)))


def _parse_expression(expression: str, variables: Mapping[str, Any]) -> Value:
    segments = [segment.strip() for segment in expression.strip().split(".")]
    if not all(segments):
        raise ValidationError(f"Malformed expression '${{{expression}}}'")

    if segments[0] == "var":
        if len(segments) != 2:
            raise ValidationError(f"Malformed variable reference '${{{expression}}}', expected ${{var.name}}")
        if segments[1] not in variables:
            raise ValidationError(f"Undeclared variable '{segments[1]}' in '${{{expression}}}'")
        return Literal(variables[segments[1]])

    if len(segments) < 3:
        raise ValidationError(
            f"Malformed reference '${{{expression}}}', expected ${{type.name.attribute}}"
        )
    return Reference(ResourceAddress(segments[0], segments[1]), tuple(segments[2:]))


def _merge_adjacent_text(parts):
    merged = []
    for part in parts:
        if isinstance(part, str) and merged and isinstance(merged[-1], str):
            merged[-1] += part
        else:
            merged.append(part)
    return merged


def references(value: Value) -> Iterator[Reference]:
    """Yield every reference contained in a value, depth first."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, Template):
        for part in value.parts:
            if isinstance(part, Reference):
                yield part
    elif isinstance(value, ListValue):
        for item in value.items:
            yield from references(item)
    elif isinstance(value, MappingValue):
        for _, item in value.items:
            yield from references(item)


def resolve(value: Value, lookup: Lookup) -> Any:
    """
    Resolve a tagged value into plain data.

    Args:
        value: Parsed value
        lookup: Called with (address, path); returns the referenced value or UNKNOWN

    Returns:
        Plain Python data, possibly containing the UNKNOWN sentinel
    """
    if isinstance(value, Literal):
        return value.value
    if isinstance(value, Reference):
        return lookup(value.address, value.path)
    if isinstance(value, Template):
        rendered = []
        for part in value.parts:
            if isinstance(part, Reference):
                resolved = lookup(part.address, part.path)
                if contains_unknown(resolved):
                    return UNKNOWN
                rendered.append(_stringify(resolved))
            else:
                rendered.append(part)
        return "".join(rendered)
    if isinstance(value, ListValue):
        return [resolve(item, lookup) for item in value.items]
    if isinstance(value, MappingValue):
        return {key: resolve(item, lookup) for key, item in value.items}
    raise TypeError(f"Not a tagged value: {value!r}")


def resolve_attributes(attributes: Mapping[str, Value], lookup: Lookup) -> Dict[str, Any]:
    """Resolve a top-level attribute mapping."""
    return {key: resolve(value, lookup) for key, value in attributes.items()}


def contains_unknown(data: Any) -> bool:
    """True if data is UNKNOWN or holds UNKNOWN anywhere inside it."""
    if data is UNKNOWN:
        return True
    if isinstance(data, dict):
        return any(contains_unknown(v) for v in data.values())
    if isinstance(data, (list, tuple)):
        return any(contains_unknown(v) for v in data)
    return False


def extract_path(data: Any, path: Sequence[str], address: Optional[ResourceAddress] = None) -> Any:
    """
    Walk an attribute path through nested mappings and lists.

    Raises:
        ReferenceResolutionError: If a segment does not exist
    """
    current = data
    for index, segment in enumerate(path):
        if current is UNKNOWN:
            return UNKNOWN
        if isinstance(current, dict):
            if segment not in current:
                raise ReferenceResolutionError(_missing_message(address, path, index))
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            if not segment.isdigit() or int(segment) >= len(current):
                raise ReferenceResolutionError(_missing_message(address, path, index))
            current = current[int(segment)]
        else:
            raise ReferenceResolutionError(_missing_message(address, path, index))
    return current


def _missing_message(address: Optional[ResourceAddress], path: Sequence[str], index: int) -> str:
    where = f"{address}." if address else ""
    return f"Attribute '{where}{'.'.join(path)}' not found (missing segment '{path[index]}')"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)
