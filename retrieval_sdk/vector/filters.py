# retrieval_sdk/vector/filters.py
# SPDX-License-Identifier: Apache-2.0
"""
Metadata filter translation.

Pure functions that turn a `MetadataFilter` tree into:

- a document-store JSON filter (`$eq`, `$in`, `$nin`, `$gt`, `$gte`, `$lt`,
  `$lte`, `$contains`, `$and`, `$or`), consumed by the Chroma backend;
- a parameterized SQL fragment against a JSONB `metadata` column, consumed
  by the pgvector backend.

Field names end up inside SQL text as JSON path keys, so they are reduced
to `[A-Za-z0-9_]` before use. Values are always bound parameters.

`matches_filter` evaluates the same tree in process with the semantics of
the SQL translation.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from retrieval_sdk.vector.errors import InvalidFilterError
from retrieval_sdk.vector.types import MetadataFilter

_FIELD_RE = re.compile(r"[^A-Za-z0-9_]")

_NUMERIC_OPS = (
    ("greater_than", "$gt", ">"),
    ("greater_or_equal", "$gte", ">="),
    ("less_than", "$lt", "<"),
    ("less_or_equal", "$lte", "<="),
)


@dataclass(frozen=True)
class SqlFilter:
    """SQL text with `%s` placeholders and its parameters in order."""

    sql: str = ""
    params: List[Any] = field(default_factory=list)
    next_index: int = 1

    def where(self) -> str:
        """The fragment as a ` WHERE ...` clause, or "" when empty."""
        return f" WHERE {self.sql}" if self.sql else ""

    def and_(self) -> str:
        return f" AND {self.sql}" if self.sql else ""


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_metadata_filter(flt: Optional[MetadataFilter]) -> None:
    """
    Structural validation. Raises InvalidFilterError on the first problem.
    """
    if flt is None:
        return
    if not isinstance(flt, MetadataFilter):
        raise InvalidFilterError(f"filter must be a MetadataFilter, got {type(flt).__name__}")

    for attr, _, _ in _NUMERIC_OPS:
        for key, value in getattr(flt, attr).items():
            if not _is_number(value):
                raise InvalidFilterError(
                    f"{attr} value for '{key}' must be a number",
                    details={"field": key, "operator": attr},
                )
    for attr in ("in_", "not_in"):
        for key, value in getattr(flt, attr).items():
            if not isinstance(value, (list, tuple)):
                raise InvalidFilterError(
                    f"{attr} value for '{key}' must be a list",
                    details={"field": key, "operator": attr},
                )
    for key, value in flt.contains.items():
        if not isinstance(value, str):
            raise InvalidFilterError(
                f"contains value for '{key}' must be a string",
                details={"field": key, "operator": "contains"},
            )
    for child in list(flt.and_) + list(flt.or_):
        if child is None:
            raise InvalidFilterError("and_/or_ children must not be None")
        validate_metadata_filter(child)


def is_empty_filter(flt: Optional[MetadataFilter]) -> bool:
    if flt is None:
        return True
    if (
        flt.equals or flt.in_ or flt.not_in or flt.contains
        or flt.greater_than or flt.greater_or_equal or flt.less_than or flt.less_or_equal
    ):
        return False
    return all(is_empty_filter(c) for c in flt.and_) and all(is_empty_filter(c) for c in flt.or_)


# --------------------------------------------------------------------------- #
# Document-store JSON
# --------------------------------------------------------------------------- #


def to_document_store_filter(flt: Optional[MetadataFilter]) -> Dict[str, Any]:
    """
    Translate to the JSON filter dialect of document stores.

    A single condition is returned bare; several are combined under `$and`.
    An empty filter yields `{}`.
    """
    if is_empty_filter(flt):
        return {}

    conditions: List[Dict[str, Any]] = []
    for key, value in flt.equals.items():
        conditions.append({key: {"$eq": value}})
    for key, values in flt.in_.items():
        conditions.append({key: {"$in": list(values)}})
    for key, values in flt.not_in.items():
        conditions.append({key: {"$nin": list(values)}})
    for attr, op, _ in _NUMERIC_OPS:
        for key, value in getattr(flt, attr).items():
            conditions.append({key: {op: value}})
    for key, value in flt.contains.items():
        conditions.append({key: {"$contains": value}})

    for combinator, children in (("$and", flt.and_), ("$or", flt.or_)):
        translated = [to_document_store_filter(c) for c in children if not is_empty_filter(c)]
        if len(translated) == 1:
            conditions.append(translated[0])
        elif translated:
            conditions.append({combinator: translated})

    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


# --------------------------------------------------------------------------- #
# SQL
# --------------------------------------------------------------------------- #


def sanitize_field_name(name: str) -> str:
    cleaned = _FIELD_RE.sub("", str(name))
    if not cleaned:
        raise InvalidFilterError(f"invalid metadata field name: {name!r}", details={"field": str(name)})
    return cleaned


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_text(value: Any) -> Optional[str]:
    """Render a value the way `metadata->>'key'` renders the stored JSON."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


def _sql_conditions(flt: MetadataFilter, params: List[Any], column: str) -> List[str]:
    parts: List[str] = []

    def path(key: str) -> str:
        return f"{column}->>'{sanitize_field_name(key)}'"

    for key, value in flt.equals.items():
        if value is None:
            parts.append(f"{path(key)} IS NULL")
        else:
            params.append(_as_text(value))
            parts.append(f"{path(key)} = %s")

    for key, values in flt.in_.items():
        if not values:
            parts.append("FALSE")
            continue
        params.extend(_as_text(v) for v in values)
        parts.append(f"{path(key)} IN ({', '.join(['%s'] * len(values))})")

    for key, values in flt.not_in.items():
        if not values:
            parts.append("TRUE")
            continue
        params.extend(_as_text(v) for v in values)
        parts.append(f"{path(key)} NOT IN ({', '.join(['%s'] * len(values))})")

    for attr, _, op in _NUMERIC_OPS:
        for key, value in getattr(flt, attr).items():
            params.append(value)
            parts.append(f"({path(key)})::numeric {op} %s")

    for key, term in flt.contains.items():
        params.append(f"%{escape_like(term)}%")
        parts.append(f"{path(key)} LIKE %s ESCAPE '\\'")

    for child in flt.and_:
        if is_empty_filter(child):
            continue
        sub = _sql_conditions(child, params, column)
        parts.append("(" + " AND ".join(sub) + ")")

    ors = []
    for child in flt.or_:
        if is_empty_filter(child):
            continue
        sub = _sql_conditions(child, params, column)
        ors.append("(" + " AND ".join(sub) + ")")
    if ors:
        parts.append("(" + " OR ".join(ors) + ")")

    return parts


def to_sql_filter(
    flt: Optional[MetadataFilter],
    param_offset: int = 1,
    *,
    column: str = "metadata",
) -> SqlFilter:
    """
    Translate to a parameterized SQL boolean expression.

    `param_offset` is the 1-based position of the first parameter within the
    enclosing statement; the returned `next_index` is the position after the
    last one, so fragments can be spliced one after another.
    """
    if is_empty_filter(flt):
        return SqlFilter("", [], param_offset)
    params: List[Any] = []
    parts = _sql_conditions(flt, params, column)
    return SqlFilter(" AND ".join(parts), params, param_offset + len(params))


# --------------------------------------------------------------------------- #
# In-process evaluation and builders
# --------------------------------------------------------------------------- #


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def matches_filter(metadata: Optional[Mapping[str, Any]], flt: Optional[MetadataFilter]) -> bool:
    """
    Evaluate `flt` against a metadata map.

    A predicate on a missing key is false, as with SQL NULL comparisons.
    """
    if is_empty_filter(flt):
        return True
    md = metadata or {}

    for key, value in flt.equals.items():
        if value is None:
            if md.get(key) is not None:
                return False
        elif key not in md or _as_text(md[key]) != _as_text(value):
            return False

    for key, values in flt.in_.items():
        if key not in md or _as_text(md[key]) not in {_as_text(v) for v in values}:
            return False

    for key, values in flt.not_in.items():
        if not values:
            continue
        if md.get(key) is None or _as_text(md[key]) in {_as_text(v) for v in values}:
            return False

    checks = {
        "greater_than": lambda a, b: a > b,
        "greater_or_equal": lambda a, b: a >= b,
        "less_than": lambda a, b: a < b,
        "less_or_equal": lambda a, b: a <= b,
    }
    for attr, check in checks.items():
        for key, bound in getattr(flt, attr).items():
            actual = _as_float(md.get(key))
            if actual is None or not check(actual, float(bound)):
                return False

    for key, term in flt.contains.items():
        value = md.get(key)
        if value is None:
            return False
        text = value if isinstance(value, str) else _as_text(value)
        if term not in text:
            return False

    if not all(matches_filter(md, c) for c in flt.and_):
        return False
    ors = [c for c in flt.or_ if not is_empty_filter(c)]
    if ors and not any(matches_filter(md, c) for c in ors):
        return False
    return True


def merge_filters(*filters: Optional[MetadataFilter]) -> Optional[MetadataFilter]:
    """AND together the non-empty filters; None when nothing remains."""
    kept = [f for f in filters if not is_empty_filter(f)]
    if not kept:
        return None
    if len(kept) == 1:
        return kept[0]
    return MetadataFilter(and_=kept)


def where_equals(key: str, value: Any) -> MetadataFilter:
    return MetadataFilter(equals={key: value})


def where_in(key: str, values: Sequence[Any]) -> MetadataFilter:
    return MetadataFilter(in_={key: list(values)})


def where_range(
    key: str,
    *,
    gt: Optional[float] = None,
    gte: Optional[float] = None,
    lt: Optional[float] = None,
    lte: Optional[float] = None,
) -> MetadataFilter:
    return MetadataFilter(
        greater_than={key: gt} if gt is not None else {},
        greater_or_equal={key: gte} if gte is not None else {},
        less_than={key: lt} if lt is not None else {},
        less_or_equal={key: lte} if lte is not None else {},
    )


__all__ = [
    "SqlFilter",
    "validate_metadata_filter",
    "is_empty_filter",
    "to_document_store_filter",
    "to_sql_filter",
    "sanitize_field_name",
    "escape_like",
    "matches_filter",
    "merge_filters",
    "where_equals",
    "where_in",
    "where_range",
]
