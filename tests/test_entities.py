from __future__ import annotations

import pytest

from anomaly_charts.features.entities import (
    category_field_entity_label,
    child_category_fields,
    child_entity_options,
    contains_entity,
    count_entity_combos,
    ensure_combo_limit,
    entity_list_key,
    entity_list_label,
    entity_lists_match,
    expand_entity_combos,
    iter_entity_combos,
    parse_heatmap_cell_label,
)
from anomaly_charts.types import Entity


def test_expand_one_parent_with_two_by_three_children() -> None:
    parent = [Entity("region", "us-east")]
    children = {"host": ["h1", "h2"], "service": ["api", "db", "web"]}

    combos = expand_entity_combos(parent, children)

    assert len(combos) == 6 == count_entity_combos(children)
    assert len(set(combos)) == 6
    assert all(len(combo) == 3 and combo[0] == parent[0] for combo in combos)
    assert combos[0] == (
        Entity("region", "us-east"),
        Entity("host", "h1"),
        Entity("service", "api"),
    )
    # last field varies fastest
    assert [combo[2].value for combo in combos[:3]] == ["api", "db", "web"]
    assert combos == list(iter_entity_combos(parent, children))


def test_expand_with_empty_child_field_yields_nothing() -> None:
    assert expand_entity_combos([Entity("a", "1")], {"b": []}) == []
    assert count_entity_combos({"b": []}) == 0


def test_ensure_combo_limit() -> None:
    assert ensure_combo_limit(5, limit=5) == 5
    with pytest.raises(ValueError, match="at most 5 time series"):
        ensure_combo_limit(6, limit=5)


def test_child_fields_and_options() -> None:
    parent = [Entity("region", "us-east")]
    fields = child_category_fields(parent, ["region", "host", "service"])
    combos = [
        (Entity("host", "h1"), Entity("service", "api")),
        (Entity("host", "h2"), Entity("service", "api")),
        (Entity("host", "h1"), Entity("service", "db")),
    ]

    options = child_entity_options(fields, combos)

    assert fields == ["host", "service"]
    assert options == {"host": ["h1", "h2"], "service": ["api", "db"]}


def test_entity_labels_round_trip_through_heatmap_cell_text() -> None:
    entities = (Entity("region", "us-east"), Entity("host", "h1"))

    cell_text = category_field_entity_label(entities, ", ")

    assert entity_list_label(entities) == "us-east<br>h1"
    assert cell_text == "region: us-east, host: h1"
    assert parse_heatmap_cell_label(cell_text) == entities
    assert category_field_entity_label((Entity(None, "  "),)) == "None"


def test_entity_list_comparisons() -> None:
    left = (Entity("region", "us-east"), Entity("host", "h1"))
    right = (Entity("zone", "us-east"), Entity("node", "h1"))

    assert entity_lists_match(left, right)
    assert not entity_lists_match(left, left[:1])
    assert contains_entity(Entity("host", "h1"), left)
    assert not contains_entity(Entity("host", "h1"), right)
    assert entity_list_key(left) == (("region", "us-east"), ("host", "h1"))
