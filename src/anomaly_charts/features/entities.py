from __future__ import annotations

import itertools
from typing import Iterator, Mapping, Sequence

from anomaly_charts.types import Entity, EntityList

ENTITY_LIST_DELIMITER = "<br>"
HEATMAP_CELL_ENTITY_DELIMITER = ", "
HEATMAP_CELL_KEY_VALUE_DELIMITER = ": "
PLACEHOLDER_ENTITY_LABEL = "None"
MAX_TIME_SERIES_TO_DISPLAY = 5
TOP_CHILD_ENTITIES_TO_FETCH = 20


def iter_entity_combos(
    parent_entities: Sequence[Entity],
    child_options_by_field: Mapping[str, Sequence[str]],
) -> Iterator[EntityList]:
    """Yield the parent entities followed by one value per child field.

    Child fields vary in declaration order, the last field fastest.
    """
    parent = tuple(parent_entities)
    sources = [
        [Entity(name=field_name, value=value) for value in values]
        for field_name, values in child_options_by_field.items()
    ]
    for children in itertools.product(*sources):
        yield parent + tuple(children)


def expand_entity_combos(
    parent_entities: Sequence[Entity],
    child_options_by_field: Mapping[str, Sequence[str]],
) -> list[EntityList]:
    return list(iter_entity_combos(parent_entities, child_options_by_field))


def count_entity_combos(child_options_by_field: Mapping[str, Sequence[str]]) -> int:
    count = 1
    for values in child_options_by_field.values():
        count *= len(values)
    return count


def ensure_combo_limit(count: int, limit: int = MAX_TIME_SERIES_TO_DISPLAY) -> int:
    if count > limit:
        raise ValueError(
            f"{count} entity combinations selected; at most {limit} time series can be displayed"
        )
    return count


def child_category_fields(
    parent_entities: Sequence[Entity],
    all_fields: Sequence[str],
) -> list[str]:
    parent_fields = {entity.name for entity in parent_entities}
    return [field_name for field_name in all_fields if field_name not in parent_fields]


def child_entity_options(
    child_fields: Sequence[str],
    child_combos: Sequence[Sequence[Entity]],
) -> dict[str, list[str]]:
    """Collect the distinct values seen for each child field, in first-seen order."""
    options: dict[str, list[str]] = {}
    for field_name in child_fields:
        values = [
            entity.value
            for combo in child_combos
            for entity in combo
            if entity.name == field_name
        ]
        options[field_name] = list(dict.fromkeys(values))
    return options


def entity_list_label(
    entity_list: Sequence[Entity],
    delimiter: str = ENTITY_LIST_DELIMITER,
) -> str:
    return delimiter.join(entity.value for entity in entity_list)


def category_field_entity_label(
    entity_list: Sequence[Entity],
    delimiter: str = "\n",
) -> str:
    parts = []
    for entity in entity_list:
        if entity.name is None:
            parts.append(PLACEHOLDER_ENTITY_LABEL)
        else:
            parts.append(f"{entity.name}{HEATMAP_CELL_KEY_VALUE_DELIMITER}{entity.value}")
    return delimiter.join(parts)


def parse_heatmap_cell_label(label: str) -> EntityList:
    """Invert ``category_field_entity_label`` with the heatmap cell delimiter."""
    entities = []
    for part in label.split(HEATMAP_CELL_ENTITY_DELIMITER):
        name, _, value = part.partition(HEATMAP_CELL_KEY_VALUE_DELIMITER)
        entities.append(Entity(name=name, value=value))
    return tuple(entities)


def entity_lists_match(left: Sequence[Entity], right: Sequence[Entity]) -> bool:
    if len(left) != len(right):
        return False
    return all(a.value == b.value for a, b in zip(left, right))


def contains_entity(entity: Entity, entities: Sequence[Entity]) -> bool:
    return any(entity.name == other.name and entity.value == other.value for other in entities)


def entity_list_key(entity_list: Sequence[Entity]) -> tuple[tuple[str | None, str], ...]:
    return tuple((entity.name, entity.value) for entity in entity_list)
