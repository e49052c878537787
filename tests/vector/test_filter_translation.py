# SPDX-License-Identifier: Apache-2.0
"""
Vector Store — Metadata filter validation, translation and evaluation.
"""

import pytest

from retrieval_sdk.vector.errors import InvalidFilterError
from retrieval_sdk.vector.filters import (
    escape_like,
    is_empty_filter,
    matches_filter,
    merge_filters,
    sanitize_field_name,
    to_document_store_filter,
    to_sql_filter,
    validate_metadata_filter,
    where_equals,
    where_in,
    where_range,
)
from retrieval_sdk.vector.types import MetadataFilter

pytestmark = pytest.mark.asyncio

CHUNK_OR = MetadataFilter(
    or_=[
        MetadataFilter(equals={"chunk": "function"}),
        MetadataFilter(equals={"chunk": "class"}),
    ]
)

AND_PAIRS = [
    (where_equals("lang", "python"), where_range("line", gte=10)),
    (CHUNK_OR, MetadataFilter(contains={"path": "src"})),
    (where_in("lang", ["python", "sql"]), MetadataFilter(not_in={"chunk": ["class"]})),
]

SAMPLES = [
    {"lang": "python", "line": 10, "chunk": "function", "path": "src/app.py"},
    {"lang": "python", "line": 80, "chunk": "class", "path": "src/models.py"},
    {"lang": "sql", "line": 5, "chunk": "statement", "path": "db/schema.sql"},
    {"lang": "python", "chunk": "module"},
    {},
]


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #


async def test_validate_accepts_well_formed_tree():
    flt = MetadataFilter(
        equals={"lang": "python"},
        in_={"chunk": ["function", "class"]},
        greater_or_equal={"line": 10},
        contains={"path": "src/"},
        and_=[CHUNK_OR],
    )
    validate_metadata_filter(flt)
    validate_metadata_filter(None)


@pytest.mark.parametrize(
    "flt",
    [
        MetadataFilter(greater_than={"line": "10"}),
        MetadataFilter(less_or_equal={"line": True}),
        MetadataFilter(in_={"lang": "python"}),
        MetadataFilter(not_in={"lang": {"python"}}),
        MetadataFilter(contains={"path": 3}),
        MetadataFilter(and_=[MetadataFilter(less_than={"line": None})]),
        MetadataFilter(or_=[None]),
    ],
)
async def test_validate_rejects_malformed(flt):
    with pytest.raises(InvalidFilterError) as exc_info:
        validate_metadata_filter(flt)
    assert exc_info.value.code == "INVALID_FILTER"


async def test_validate_rejects_non_filter():
    with pytest.raises(InvalidFilterError):
        validate_metadata_filter({"lang": "python"})


async def test_is_empty_filter():
    assert is_empty_filter(None)
    assert is_empty_filter(MetadataFilter())
    assert is_empty_filter(MetadataFilter(and_=[MetadataFilter()], or_=[MetadataFilter()]))
    assert not is_empty_filter(where_equals("lang", "python"))


# --------------------------------------------------------------------------- #
# Document-store JSON
# --------------------------------------------------------------------------- #


async def test_document_store_single_condition_is_bare():
    assert to_document_store_filter(where_equals("lang", "python")) == {"lang": {"$eq": "python"}}


async def test_document_store_multiple_conditions_use_and():
    flt = MetadataFilter(
        equals={"lang": "python"},
        not_in={"chunk": ["module"]},
        greater_than={"line": 1},
        less_or_equal={"line": 100},
        contains={"path": "src"},
    )
    assert to_document_store_filter(flt) == {
        "$and": [
            {"lang": {"$eq": "python"}},
            {"chunk": {"$nin": ["module"]}},
            {"line": {"$gt": 1}},
            {"line": {"$lte": 100}},
            {"path": {"$contains": "src"}},
        ]
    }


async def test_document_store_or_children():
    assert to_document_store_filter(CHUNK_OR) == {
        "$or": [{"chunk": {"$eq": "function"}}, {"chunk": {"$eq": "class"}}]
    }


async def test_document_store_nested_and_with_single_child_inlined():
    flt = MetadataFilter(in_={"lang": ["python", "sql"]}, and_=[where_range("line", gte=10)])
    assert to_document_store_filter(flt) == {
        "$and": [{"lang": {"$in": ["python", "sql"]}}, {"line": {"$gte": 10}}]
    }


async def test_document_store_empty_filter():
    assert to_document_store_filter(None) == {}
    assert to_document_store_filter(MetadataFilter()) == {}


# --------------------------------------------------------------------------- #
# SQL
# --------------------------------------------------------------------------- #


async def test_sql_equals_and_range():
    frag = to_sql_filter(MetadataFilter(equals={"lang": "python"}, greater_or_equal={"line": 10}))
    assert frag.sql == "metadata->>'lang' = %s AND (metadata->>'line')::numeric >= %s"
    assert frag.params == ["python", 10]
    assert frag.next_index == 3
    assert frag.where() == " WHERE " + frag.sql
    assert frag.and_() == " AND " + frag.sql


async def test_sql_param_offset_advances():
    frag = to_sql_filter(where_in("lang", ["python", "sql"]), 2)
    assert frag.sql == "metadata->>'lang' IN (%s, %s)"
    assert frag.params == ["python", "sql"]
    assert frag.next_index == 4


async def test_sql_or_children_parenthesized():
    frag = to_sql_filter(MetadataFilter(equals={"lang": "python"}, or_=CHUNK_OR.or_))
    assert frag.sql == (
        "metadata->>'lang' = %s AND "
        "((metadata->>'chunk' = %s) OR (metadata->>'chunk' = %s))"
    )
    assert frag.params == ["python", "function", "class"]


async def test_sql_scalar_rendering():
    frag = to_sql_filter(MetadataFilter(equals={"flag": True, "n": 3, "gone": None}))
    assert frag.sql == "metadata->>'flag' = %s AND metadata->>'n' = %s AND metadata->>'gone' IS NULL"
    assert frag.params == ["true", "3"]


async def test_sql_empty_lists():
    assert to_sql_filter(MetadataFilter(in_={"lang": []})).sql == "FALSE"
    assert to_sql_filter(MetadataFilter(not_in={"lang": []})).sql == "TRUE"


async def test_sql_contains_escapes_like_wildcards():
    frag = to_sql_filter(MetadataFilter(contains={"path": "50%_off"}))
    assert frag.sql == "metadata->>'path' LIKE %s ESCAPE '\\'"
    assert frag.params == ["%50\\%\\_off%"]


async def test_sql_field_names_sanitized():
    frag = to_sql_filter(where_equals("la'ng; DROP TABLE x", "python"))
    assert frag.sql == "metadata->>'langDROPTABLEx' = %s"
    assert frag.params == ["python"]


async def test_sql_unusable_field_name_rejected():
    with pytest.raises(InvalidFilterError):
        to_sql_filter(where_equals("';--", "x"))
    with pytest.raises(InvalidFilterError):
        sanitize_field_name("")


async def test_sql_empty_filter():
    frag = to_sql_filter(None, 5)
    assert frag.sql == ""
    assert frag.params == []
    assert frag.next_index == 5
    assert frag.where() == ""


async def test_escape_like():
    assert escape_like("a\\b%c_d") == "a\\\\b\\%c\\_d"


# --------------------------------------------------------------------------- #
# In-process evaluation
# --------------------------------------------------------------------------- #


async def test_matches_filter_leaf_predicates():
    md = SAMPLES[0]
    assert matches_filter(md, where_equals("lang", "python"))
    assert not matches_filter(md, where_equals("lang", "sql"))
    assert matches_filter(md, where_in("chunk", ["function", "class"]))
    assert matches_filter(md, MetadataFilter(not_in={"chunk": ["class"]}))
    assert matches_filter(md, where_range("line", gt=5, lte=10))
    assert not matches_filter(md, where_range("line", lt=10))
    assert matches_filter(md, MetadataFilter(contains={"path": "app"}))


async def test_matches_filter_missing_key_is_false():
    assert not matches_filter(SAMPLES[3], where_range("line", gte=0))
    assert not matches_filter({}, MetadataFilter(not_in={"lang": ["sql"]}))
    assert not matches_filter({}, MetadataFilter(contains={"path": "src"}))


async def test_matches_filter_empty_matches_everything():
    assert all(matches_filter(md, None) for md in SAMPLES)
    assert all(matches_filter(md, MetadataFilter()) for md in SAMPLES)


async def test_matches_filter_or_semantics():
    hits = [md.get("chunk") for md in SAMPLES if matches_filter(md, CHUNK_OR)]
    assert hits == ["function", "class"]


@pytest.mark.parametrize("left, right", AND_PAIRS)
async def test_and_children_equal_conjunction(left, right):
    """and_=[f, g] selects exactly the samples both f and g select."""
    combined = MetadataFilter(and_=[left, right])
    merged = merge_filters(left, None, right)
    for md in SAMPLES:
        expected = matches_filter(md, left) and matches_filter(md, right)
        assert matches_filter(md, combined) is expected
        assert matches_filter(md, merged) is expected


@pytest.mark.parametrize("left, right", AND_PAIRS)
async def test_and_children_sql_is_conjunction_of_fragments(left, right):
    """and_=[f, g] renders as (f) AND (g) with f's params before g's."""
    combined = to_sql_filter(MetadataFilter(and_=[left, right]), param_offset=3)
    ls, rs = to_sql_filter(left), to_sql_filter(right)
    assert combined.sql == f"({ls.sql}) AND ({rs.sql})"
    assert combined.params == ls.params + rs.params
    assert combined.next_index == 3 + len(ls.params) + len(rs.params)


@pytest.mark.parametrize("left, right", AND_PAIRS)
async def test_and_children_document_filter_is_and_of_translations(left, right):
    combined = to_document_store_filter(MetadataFilter(and_=[left, right]))
    assert combined == {"$and": [to_document_store_filter(left), to_document_store_filter(right)]}


async def test_merge_filters_shortcuts():
    f = where_equals("lang", "python")
    assert merge_filters() is None
    assert merge_filters(None, MetadataFilter()) is None
    assert merge_filters(None, f) is f


async def test_builders():
    assert where_range("line", gt=1, lt=9) == MetadataFilter(
        greater_than={"line": 1}, less_than={"line": 9}
    )
    assert where_in("lang", ("a", "b")).in_ == {"lang": ["a", "b"]}
