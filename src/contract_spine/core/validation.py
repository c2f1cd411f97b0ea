"""
Response schema validation.

Schemas are registered once by name and checked against every response
that names them. A definition is a small JSON-schema-like mapping that is
parsed with pydantic and compiled into a closed set of rule variants:

    TypeRule      ─ value is object / string / number / boolean / array
    BoundsRule    ─ inclusive numeric minimum / maximum
    PatternRule   ─ string matches a regular expression
    RequiredRule  ─ object carries every required field
    RefRule       ─ nested value validated against another registered schema

A single dispatcher (:func:`_evaluate`) applies each rule and collects
*every* violation, so a caller can report all problems at once.

Validation is flat: ``properties`` of the schema's own object are checked,
deeper levels only through an explicit ``$ref``.

Example::

    validator = SchemaValidator()
    validator.register("PlayerStats", {
        "type": "object",
        "properties": {
            "health": {"type": "number", "minimum": 0, "maximum": 100},
            "level": {"type": "number", "minimum": 1},
            "class": {"type": "string", "pattern": "^(archer|rogue|gladiator|mage)$"},
        },
        "required": ["health", "level", "class"],
    })
    validator.validate({"health": 150, "level": 3, "class": "archer"}, "PlayerStats")
    # [Violation(path='health', rule='maximum', ...)]

Related modules:
    core/errors.py — SchemaValidationError (carries the violations)
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from contract_spine.core.errors import ConfigError, SchemaValidationError
from contract_spine.core.logging import get_logger

logger = get_logger(__name__)

JsonType = Literal["object", "string", "number", "boolean", "array"]

MAX_REF_DEPTH = 32


class SchemaDefinition(BaseModel):
    """Parsed form of a schema mapping as supplied by callers."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: JsonType | None = None
    minimum: float | None = None
    maximum: float | None = None
    pattern: str | None = None
    required: list[str] = Field(default_factory=list)
    properties: dict[str, SchemaDefinition] = Field(default_factory=dict)
    ref: str | None = Field(default=None, alias="$ref")

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid pattern {value!r}: {e}") from e
        return value


SchemaDefinition.model_rebuild()


# ── Rule variants ────────────────────────────────────────────────────────
# ``field`` is the property name the rule applies to, None for the payload itself.


@dataclass(frozen=True)
class TypeRule:
    field: str | None
    expected: JsonType


@dataclass(frozen=True)
class BoundsRule:
    field: str | None
    minimum: float | None = None
    maximum: float | None = None


@dataclass(frozen=True)
class PatternRule:
    field: str | None
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class RequiredRule:
    fields: tuple[str, ...]


@dataclass(frozen=True)
class RefRule:
    field: str | None
    schema: str


Rule = TypeRule | BoundsRule | PatternRule | RequiredRule | RefRule


@dataclass(frozen=True)
class Violation:
    """One failed rule."""

    path: str
    rule: str
    message: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "rule": self.rule,
            "message": self.message,
            "value": repr(self.value),
        }


@dataclass(frozen=True)
class Schema:
    """A registered, compiled schema."""

    name: str
    rules: tuple[Rule, ...]
    definition: SchemaDefinition


# ── Compilation ──────────────────────────────────────────────────────────


def _field_rules(field: str | None, node: SchemaDefinition) -> list[Rule]:
    rules: list[Rule] = []
    if node.ref is not None:
        rules.append(RefRule(field, node.ref))
    if node.type is not None:
        rules.append(TypeRule(field, node.type))
    if node.minimum is not None or node.maximum is not None:
        rules.append(BoundsRule(field, node.minimum, node.maximum))
    if node.pattern is not None:
        rules.append(PatternRule(field, re.compile(node.pattern)))
    return rules


def compile_schema(name: str, definition: SchemaDefinition) -> Schema:
    """Turn a parsed definition into its flat rule set."""
    rules = _field_rules(None, definition)
    if definition.required:
        rules.append(RequiredRule(tuple(definition.required)))
    for prop, node in definition.properties.items():
        rules.extend(_field_rules(prop, node))
    return Schema(name=name, rules=tuple(rules), definition=definition)


# ── Evaluation ───────────────────────────────────────────────────────────


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    if value is None:
        return "null"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _lookup(payload: Any, field: str | None) -> tuple[bool, Any]:
    if field is None:
        return True, payload
    if isinstance(payload, Mapping) and field in payload:
        return True, payload[field]
    return False, None


def _join(prefix: str, field: str | None) -> str:
    if field is None:
        return prefix
    return f"{prefix}.{field}" if prefix else field


class SchemaValidator:
    """Registry of named schemas plus the validation entry points.

    Registration is append/overwrite by name; schemas are never removed
    implicitly.
    """

    def __init__(self) -> None:
        self._schemas: dict[str, Schema] = {}

    def register(self, name: str, definition: Mapping[str, Any] | SchemaDefinition) -> Schema:
        """Register (or replace) a schema.

        Raises:
            ConfigError: If the definition is malformed.
        """
        if not isinstance(definition, SchemaDefinition):
            try:
                definition = SchemaDefinition.model_validate(definition)
            except PydanticValidationError as e:
                raise ConfigError(f"Invalid schema definition '{name}'", cause=e) from e
        schema = compile_schema(name, definition)
        replaced = name in self._schemas
        self._schemas[name] = schema
        logger.debug("schema.registered", schema=name, rules=len(schema.rules), replaced=replaced)
        return schema

    def get(self, name: str) -> Schema:
        try:
            return self._schemas[name]
        except KeyError:
            raise ConfigError(f"Schema '{name}' is not registered") from None

    def has(self, name: str) -> bool:
        return name in self._schemas

    @property
    def names(self) -> list[str]:
        return sorted(self._schemas)

    def validate(self, payload: Any, name: str) -> list[Violation]:
        """Return every violation of schema ``name`` (empty list when valid)."""
        return self._validate(payload, self.get(name), prefix="", depth=0)

    def check(self, payload: Any, name: str) -> None:
        """Validate and raise :class:`SchemaValidationError` listing all violations."""
        violations = self.validate(payload, name)
        if violations:
            logger.info("schema.violations", schema=name, count=len(violations))
            raise SchemaValidationError(name, violations)

    def _validate(self, payload: Any, schema: Schema, *, prefix: str, depth: int) -> list[Violation]:
        violations: list[Violation] = []
        for rule in schema.rules:
            violations.extend(self._evaluate(rule, payload, prefix, depth))
        return violations

    def _evaluate(self, rule: Rule, payload: Any, prefix: str, depth: int) -> list[Violation]:
        """Apply a single rule; the only place rule kinds are distinguished."""
        match rule:
            case RequiredRule(fields=fields):
                if not isinstance(payload, Mapping):
                    return []
                return [
                    Violation(_join(prefix, f), "required", f"'{f}' is required")
                    for f in fields
                    if f not in payload
                ]

            case TypeRule(field=field, expected=expected):
                present, value = _lookup(payload, field)
                if not present or _type_name(value) == expected:
                    return []
                return [
                    Violation(
                        _join(prefix, field),
                        "type",
                        f"expected {expected}, got {_type_name(value)}",
                        value,
                    )
                ]

            case BoundsRule(field=field, minimum=minimum, maximum=maximum):
                present, value = _lookup(payload, field)
                if not present or not _is_number(value):
                    return []
                path = _join(prefix, field)
                if minimum is not None and value < minimum:
                    return [Violation(path, "minimum", f"{value} is less than minimum {minimum:g}", value)]
                if maximum is not None and value > maximum:
                    return [Violation(path, "maximum", f"{value} exceeds maximum {maximum:g}", value)]
                return []

            case PatternRule(field=field, pattern=pattern):
                present, value = _lookup(payload, field)
                if not present or not isinstance(value, str) or pattern.search(value):
                    return []
                return [
                    Violation(
                        _join(prefix, field),
                        "pattern",
                        f"{value!r} does not match {pattern.pattern!r}",
                        value,
                    )
                ]

            case RefRule(field=field, schema=ref):
                present, value = _lookup(payload, field)
                if not present:
                    return []
                path = _join(prefix, field)
                if depth >= MAX_REF_DEPTH:
                    return [Violation(path, "ref", f"schema nesting deeper than {MAX_REF_DEPTH}")]
                return self._validate(value, self.get(ref), prefix=path, depth=depth + 1)

        raise TypeError(f"unknown rule {rule!r}")


__all__ = [
    "SchemaDefinition",
    "TypeRule",
    "BoundsRule",
    "PatternRule",
    "RequiredRule",
    "RefRule",
    "Rule",
    "Violation",
    "Schema",
    "SchemaValidator",
    "compile_schema",
]
