"""Traversal helpers over the UMS criteria tree.

Every walk matches the LogicalClause | DataElement union exhaustively;
traversal order is child order and is never changed.
"""

from collections.abc import Iterator
from typing import assert_never

from measure_compiler.schemas.base import DataElementType, PopulationType
from measure_compiler.schemas.ums import (
    Criterion,
    DataElement,
    LogicalClause,
    Measure,
    Population,
    ValueSetReference,
)


def iter_elements(clause: LogicalClause) -> Iterator[DataElement]:
    """Yield every data element under a clause, depth-first in child order."""
    for child in clause.children:
        yield from _iter_criterion(child)


def _iter_criterion(node: Criterion) -> Iterator[DataElement]:
    if isinstance(node, LogicalClause):
        yield from iter_elements(node)
    elif isinstance(node, DataElement):
        yield node
    else:
        assert_never(node)


def iter_measure_elements(measure: Measure) -> Iterator[tuple[Population, DataElement]]:
    """Yield (population, element) pairs across all populations in order."""
    for population in measure.populations:
        for element in iter_elements(population.criteria):
            yield population, element


def find_population(measure: Measure, population_type: PopulationType) -> Population | None:
    """Return the first population of the given type, if any."""
    for population in measure.populations:
        if population.type == population_type:
            return population
    return None


def has_element_type(measure: Measure, element_type: DataElementType) -> bool:
    """Check whether any population contains an element of the given type."""
    return any(element.type == element_type for _, element in iter_measure_elements(measure))


def find_element(measure: Measure, component_id: str) -> DataElement | None:
    """Find a data element by id anywhere in the measure."""
    for _, element in iter_measure_elements(measure):
        if element.id == component_id:
            return element
    return None


def resolve_value_set(element: DataElement, measure: Measure) -> ValueSetReference | None:
    """Resolve the value set for an element.

    The inline reference wins; otherwise value_set_id is matched against
    measure-level value sets by id, then by OID.
    """
    if element.value_set is not None:
        return element.value_set
    if not element.value_set_id:
        return None
    for value_set in measure.value_sets:
        if value_set.id == element.value_set_id:
            return value_set
    for value_set in measure.value_sets:
        if value_set.oid and value_set.oid == element.value_set_id:
            return value_set
    return None


def component_description(element: DataElement, measure: Measure | None = None) -> str:
    """Human-readable name of a component: description, value set name, or id."""
    if element.description:
        return element.description
    value_set = resolve_value_set(element, measure) if measure is not None else element.value_set
    if value_set is not None and value_set.name:
        return value_set.name
    return element.id


def describe_component(measure: Measure, component_id: str) -> str:
    """Description for a component id, falling back to the id when absent."""
    element = find_element(measure, component_id)
    if element is None:
        return component_id
    return component_description(element, measure)


def collect_value_sets(measure: Measure) -> list[ValueSetReference]:
    """Measure-level value sets followed by inline ones not already listed.

    Inline value sets are deduplicated by OID when present, else by name.
    """
    collected = list(measure.value_sets)
    seen = {value_set.oid or value_set.name for value_set in collected}
    for _, element in iter_measure_elements(measure):
        value_set = element.value_set
        if value_set is None:
            continue
        key = value_set.oid or value_set.name
        if key not in seen:
            seen.add(key)
            collected.append(value_set)
    return collected
