"""Pytest configuration and fixtures for backend tests."""

from collections.abc import AsyncGenerator
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from measure_compiler.api.dependencies import get_override_store
from measure_compiler.main import app
from measure_compiler.schemas import (
    AgeRange,
    CodeReference,
    DataElement,
    DataElementType,
    GlobalConstraints,
    LogicalClause,
    LogicalOperator,
    Measure,
    MeasurementPeriod,
    Population,
    PopulationType,
    TimeUnit,
    TimingConstraint,
    TimingOperator,
    ValueSetReference,
)
from measure_compiler.services.code_overrides import OverrideStore

DIABETES_OID = "2.16.840.1.113883.3.464.1003.103.12.1001"
OFFICE_VISIT_OID = "2.16.840.1.113883.3.464.1003.101.12.1001"
RETINAL_EXAM_OID = "2.16.840.1.113883.3.526.3.1283"
PALLIATIVE_OID = "2.16.840.1.113883.3.464.1003.1167"


def element(
    element_id: str,
    element_type: DataElementType,
    description: str = "",
    **kwargs,
) -> DataElement:
    """Build a data element with sensible defaults."""
    return DataElement(id=element_id, type=element_type, description=description, **kwargs)


def clause(operator: LogicalOperator, *children, clause_id: str | None = None) -> LogicalClause:
    return LogicalClause(id=clause_id, operator=operator, children=list(children))


def population(population_type: PopulationType, criteria: LogicalClause | None = None, narrative: str = "") -> Population:
    return Population(
        type=population_type,
        narrative=narrative,
        criteria=criteria or LogicalClause(),
    )


def build_diabetes_measure() -> Measure:
    """Eye exam measure with one element of each common kind."""
    return Measure(
        id="CMS131v12",
        title="Diabetes: Eye Exam",
        version="12.0.0",
        steward="NCQA",
        description="Patients with diabetes who had a retinal eye exam",
        measurement_period=MeasurementPeriod(start=date(2025, 1, 1), end=date(2025, 12, 31)),
        global_constraints=GlobalConstraints(age_range=AgeRange(min=18, max=75)),
        value_sets=[
            ValueSetReference(
                id="vs-diabetes",
                name="Diabetes",
                oid=DIABETES_OID,
                codes=[CodeReference(code="E11.9", system="ICD10CM")],
            ),
            ValueSetReference(
                id="vs-office",
                name="Office Visit",
                oid=OFFICE_VISIT_OID,
                codes=[CodeReference(code="99213", system="CPT")],
            ),
            ValueSetReference(
                id="vs-retinal",
                name="Retinal or Dilated Eye Exam",
                oid=RETINAL_EXAM_OID,
                codes=[
                    CodeReference(code="92250", system="CPT"),
                    CodeReference(code="2022F", system="CPT"),
                ],
            ),
        ],
        populations=[
            population(
                PopulationType.INITIAL_POPULATION,
                clause(
                    LogicalOperator.AND,
                    element("ip-age", DataElementType.DEMOGRAPHIC, "Age 18-75"),
                    element("ip-diabetes", DataElementType.DIAGNOSIS, "Diabetes diagnosis",
                            value_set_id="vs-diabetes"),
                    element("ip-visit", DataElementType.ENCOUNTER, "Office visit",
                            value_set_id="vs-office"),
                ),
                narrative="Patients 18-75 years of age with diabetes and a visit during the period",
            ),
            population(PopulationType.DENOMINATOR, narrative="Equals Initial Population"),
            population(
                PopulationType.DENOMINATOR_EXCLUSION,
                clause(
                    LogicalOperator.OR,
                    element(
                        "dex-palliative",
                        DataElementType.PROCEDURE,
                        "Palliative care",
                        value_set=ValueSetReference(name="Palliative Care Intervention", oid=PALLIATIVE_OID),
                    ),
                ),
                narrative="Patients receiving palliative care",
            ),
            population(
                PopulationType.NUMERATOR,
                clause(
                    LogicalOperator.OR,
                    element(
                        "num-retinal",
                        DataElementType.PROCEDURE,
                        "Retinal exam",
                        value_set_id="vs-retinal",
                        timing=TimingConstraint(
                            operator=TimingOperator.WITHIN, value=1, unit=TimeUnit.YEARS
                        ),
                    ),
                    element(
                        "num-retinal-result",
                        DataElementType.OBSERVATION,
                        "Retinal exam result",
                        value_set_id="vs-retinal",
                    ),
                ),
                narrative="Patients with a retinal exam",
            ),
        ],
    )


def build_colorectal_measure() -> Measure:
    """Screening measure matched by the colorectal boilerplate bundle."""
    return Measure(
        id="CMS130v12",
        title="Colorectal Cancer Screening",
        version="12.0.0",
        global_constraints=GlobalConstraints(age_range=AgeRange(min=45, max=75)),
        populations=[
            population(
                PopulationType.INITIAL_POPULATION,
                clause(
                    LogicalOperator.AND,
                    element("ip-age", DataElementType.DEMOGRAPHIC, "Age 45-75"),
                ),
            ),
        ],
    )


@pytest.fixture
def diabetes_measure() -> Measure:
    return build_diabetes_measure()


@pytest.fixture
def colorectal_measure() -> Measure:
    return build_colorectal_measure()


@pytest.fixture
def override_store() -> OverrideStore:
    return OverrideStore()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with a fresh override store.

    The lifespan handler does not run under ASGITransport, so the store
    dependency is overridden per test.
    """
    store = OverrideStore()
    app.dependency_overrides[get_override_store] = lambda: store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()
