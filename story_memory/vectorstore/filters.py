"""Metadata filter grammar understood by the vector store adapters.

Only three condition kinds exist: equality, set membership and
``exists: false``. A filter is the logical AND of its per-field conditions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping, Union

from story_memory.vectorstore.records import RecordMetadata

Scalar = Union[str, int, float, bool]


@dataclass(frozen=True)
class FilterField:
    column: str
    kind: Literal["scalar", "list"]


# Metadata field -> promoted store column.
FILTERABLE_FIELDS: dict[str, FilterField] = {
    "type": FilterField("record_type", "scalar"),
    "user": FilterField("memory_user", "scalar"),
    "user_id": FilterField("user_id", "scalar"),
    "username": FilterField("username", "scalar"),
    "platform": FilterField("platform", "scalar"),
    "interaction_type": FilterField("interaction_type", "scalar"),
    "interaction_count": FilterField("interaction_count", "scalar"),
    "theme": FilterField("theme", "scalar"),
    "story_id": FilterField("story_id", "scalar"),
    "used_in_stories": FilterField("used_in_stories", "list"),
    "characters": FilterField("characters", "list"),
}


@dataclass(frozen=True)
class Eq:
    value: Scalar


@dataclass(frozen=True)
class In:
    values: tuple[Scalar, ...]

    def __init__(self, values: Iterable[Scalar]):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Exists:
    present: bool = False

    def __post_init__(self) -> None:
        if self.present:
            raise ValueError("only 'exists: false' conditions are supported")


Condition = Union[Eq, In, Exists]


def sql_literal(value: Scalar) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple)) and not value)


class MetadataFilter:
    """Conjunction of per-field conditions."""

    def __init__(self, conditions: Mapping[str, Condition] | None = None):
        self._conditions: dict[str, Condition] = {}
        for name, condition in (conditions or {}).items():
            self._add(name, condition)

    @classmethod
    def where(cls, **fields: Condition | Scalar) -> "MetadataFilter":
        """Builds a filter; bare values are treated as equality."""

        conditions: dict[str, Condition] = {}
        for name, value in fields.items():
            conditions[name] = value if isinstance(value, (Eq, In, Exists)) else Eq(value)
        return cls(conditions)

    def _add(self, name: str, condition: Condition) -> None:
        spec = FILTERABLE_FIELDS.get(name)
        if spec is None:
            raise ValueError(f"Field '{name}' is not filterable")
        if not isinstance(condition, (Eq, In, Exists)):
            raise ValueError(f"Unsupported condition for '{name}': {condition!r}")
        if spec.kind == "list" and isinstance(condition, Eq):
            raise ValueError(f"List field '{name}' supports only 'in' and 'exists' conditions")
        if name in self._conditions and self._conditions[name] != condition:
            raise ValueError(f"Conflicting conditions for field '{name}'")
        self._conditions[name] = condition

    def and_(self, other: "MetadataFilter") -> "MetadataFilter":
        merged = MetadataFilter(self._conditions)
        for name, condition in other._conditions.items():
            merged._add(name, condition)
        return merged

    @property
    def conditions(self) -> dict[str, Condition]:
        return dict(self._conditions)

    def __bool__(self) -> bool:
        return bool(self._conditions)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, MetadataFilter) and self._conditions == other._conditions

    def __repr__(self) -> str:
        return f"MetadataFilter({self._conditions!r})"

    def to_sql(self) -> str | None:
        """Compiles to a SQL predicate over the promoted columns (``None`` when empty)."""

        clauses: list[str] = []
        for name in sorted(self._conditions):
            spec = FILTERABLE_FIELDS[name]
            condition = self._conditions[name]
            column = spec.column
            if isinstance(condition, Exists):
                clauses.append(f"{column} IS NULL")
            elif isinstance(condition, Eq):
                clauses.append(f"{column} = {sql_literal(condition.value)}")
            elif not condition.values:
                clauses.append("FALSE")
            else:
                literals = ", ".join(sql_literal(value) for value in condition.values)
                if spec.kind == "list":
                    clauses.append(f"array_has_any({column}, [{literals}])")
                else:
                    clauses.append(f"{column} IN ({literals})")
        if not clauses:
            return None
        return " AND ".join(clauses)

    def matches(self, metadata: RecordMetadata) -> bool:
        """Evaluates the filter against typed metadata in-process."""

        for name, condition in self._conditions.items():
            value = getattr(metadata, name, None)
            if isinstance(condition, Exists):
                if not _is_missing(value):
                    return False
            elif isinstance(condition, Eq):
                if value != condition.value:
                    return False
            elif FILTERABLE_FIELDS[name].kind == "list":
                if not set(value or []) & set(condition.values):
                    return False
            elif value not in condition.values:
                return False
        return True
