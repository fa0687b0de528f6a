"""Measure Boilerplate Registry.

Measure families (colorectal, cervical and breast cancer screening, ...)
ship a fixed library of CQL helper definitions, extra denominator
exclusions and a fixed numerator expression. The registry maps a
predicate over measure metadata to such a bundle so new families can be
added without touching the generator walk.

Features:
- Keyword matchers over title (all terms) and measure id (any term)
- Registration order decides precedence
- Helpers and exclusions gathered from every matching bundle
- Numerator taken from the first matching bundle that defines one
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
from typing import Any

from measure_compiler.schemas.ums import Measure

logger = logging.getLogger(__name__)

MeasureMatcher = Callable[[Measure], bool]


@dataclass(frozen=True)
class BoilerplateBundle:
    """Static CQL library for one measure family."""

    name: str  # Registry key (e.g. "colorectal")
    label: str  # Section comment in generated code
    matcher: MeasureMatcher
    definitions: str  # One or more complete define blocks
    exclusions: list[str] = field(default_factory=list)  # Denominator exclusion terms
    numerator: str | None = None  # Fixed numerator body, indented


def keyword_matcher(
    title_terms: tuple[str, ...] = (),
    id_terms: tuple[str, ...] = (),
) -> MeasureMatcher:
    """Build a matcher over measure title and id.

    Matches when every title term occurs in the lower-cased title, or any
    id term occurs in the upper-cased measure id.
    """
    lowered_terms = tuple(term.lower() for term in title_terms)
    upper_ids = tuple(term.upper() for term in id_terms)

    def _matches(measure: Measure) -> bool:
        title = (measure.title or "").lower()
        measure_id = (measure.id or "").upper()
        if lowered_terms and all(term in title for term in lowered_terms):
            return True
        return any(term in measure_id for term in upper_ids)

    return _matches


# ============================================================================
# Built-in bundles
# ============================================================================

COLORECTAL_DEFINITIONS = '''define "Colonoscopy Performed":
  [Procedure: "Colonoscopy"] Colonoscopy
    where Colonoscopy.status = 'completed'
      and Colonoscopy.performed ends 10 years or less before end of "Measurement Period"

define "Fecal Occult Blood Test Performed":
  [Observation: "Fecal Occult Blood Test (FOBT)"] FOBT
    where FOBT.status in { 'final', 'amended', 'corrected' }
      and FOBT.effective ends 1 year or less before end of "Measurement Period"
      and FOBT.value is not null

define "Flexible Sigmoidoscopy Performed":
  [Procedure: "Flexible Sigmoidoscopy"] Sigmoidoscopy
    where Sigmoidoscopy.status = 'completed'
      and Sigmoidoscopy.performed ends 5 years or less before end of "Measurement Period"

define "FIT DNA Test Performed":
  [Observation: "FIT DNA"] FITTest
    where FITTest.status in { 'final', 'amended', 'corrected' }
      and FITTest.effective ends 3 years or less before end of "Measurement Period"
      and FITTest.value is not null

define "CT Colonography Performed":
  [Procedure: "CT Colonography"] CTCol
    where CTCol.status = 'completed'
      and CTCol.performed ends 5 years or less before end of "Measurement Period"

define "Has Colorectal Cancer":
  exists ([Condition: "Malignant Neoplasm of Colon"] Cancer
    where Cancer.clinicalStatus ~ QICoreCommon."active")

define "Has Total Colectomy":
  exists ([Procedure: "Total Colectomy"] Colectomy
    where Colectomy.status = 'completed'
      and Colectomy.performed starts before end of "Measurement Period")'''

COLORECTAL_NUMERATOR = '''  exists "Colonoscopy Performed"
    or exists "Fecal Occult Blood Test Performed"
    or exists "Flexible Sigmoidoscopy Performed"
    or exists "FIT DNA Test Performed"
    or exists "CT Colonography Performed"'''

CERVICAL_DEFINITIONS = '''define "Cervical Cytology Within 3 Years":
  [Observation: "Pap Test"] Pap
    where Pap.status in { 'final', 'amended', 'corrected' }
      and Pap.effective ends 3 years or less before end of "Measurement Period"
      and Pap.value is not null

define "HPV Test Within 5 Years":
  [Observation: "HPV Test"] HPV
    where HPV.status in { 'final', 'amended', 'corrected' }
      and HPV.effective ends 5 years or less before end of "Measurement Period"
      and HPV.value is not null

define "Has Hysterectomy":
  exists ([Procedure: "Hysterectomy with No Residual Cervix"] Hyst
    where Hyst.status = 'completed'
      and Hyst.performed starts before end of "Measurement Period")

define "Absence of Cervix Diagnosis":
  exists ([Condition: "Congenital or Acquired Absence of Cervix"] Absence
    where Absence.clinicalStatus ~ QICoreCommon."active")'''

CERVICAL_NUMERATOR = '''  exists "Cervical Cytology Within 3 Years"
    or (AgeInYearsAt(date from end of "Measurement Period") >= 30
        and exists "HPV Test Within 5 Years")'''

BREAST_DEFINITIONS = '''define "Mammography Within 27 Months":
  [DiagnosticReport: "Mammography"] Mammogram
    where Mammogram.status in { 'final', 'amended', 'corrected' }
      and Mammogram.effective ends 27 months or less before end of "Measurement Period"

define "Has Bilateral Mastectomy":
  exists ([Procedure: "Bilateral Mastectomy"] Mastectomy
    where Mastectomy.status = 'completed'
      and Mastectomy.performed starts before end of "Measurement Period")

define "Has Unilateral Mastectomy Left":
  exists ([Procedure: "Unilateral Mastectomy Left"] LeftMastectomy
    where LeftMastectomy.status = 'completed')

define "Has Unilateral Mastectomy Right":
  exists ([Procedure: "Unilateral Mastectomy Right"] RightMastectomy
    where RightMastectomy.status = 'completed')'''

DEFAULT_BUNDLES: list[BoilerplateBundle] = [
    BoilerplateBundle(
        name="colorectal",
        label="Colorectal Cancer Screening Helpers",
        matcher=keyword_matcher(title_terms=("colorectal",), id_terms=("CMS130",)),
        definitions=COLORECTAL_DEFINITIONS,
        exclusions=['"Has Colorectal Cancer"', '"Has Total Colectomy"'],
        numerator=COLORECTAL_NUMERATOR,
    ),
    BoilerplateBundle(
        name="cervical",
        label="Cervical Cancer Screening Helpers",
        matcher=keyword_matcher(title_terms=("cervical",), id_terms=("CMS124",)),
        definitions=CERVICAL_DEFINITIONS,
        exclusions=['"Has Hysterectomy"', '"Absence of Cervix Diagnosis"'],
        numerator=CERVICAL_NUMERATOR,
    ),
    BoilerplateBundle(
        name="breast",
        label="Breast Cancer Screening Helpers",
        matcher=keyword_matcher(title_terms=("breast", "screen"), id_terms=("CMS125",)),
        definitions=BREAST_DEFINITIONS,
        exclusions=[
            '"Has Bilateral Mastectomy"',
            '("Has Unilateral Mastectomy Left" and "Has Unilateral Mastectomy Right")',
        ],
        numerator='  exists "Mammography Within 27 Months"',
    ),
]


# ============================================================================
# Registry
# ============================================================================


class BoilerplateRegistry:
    """Ordered registry of measure-family boilerplate bundles."""

    def __init__(self, bundles: list[BoilerplateBundle] | None = None):
        self._bundles: dict[str, BoilerplateBundle] = {}
        self._lock = threading.Lock()
        for bundle in bundles or []:
            self.register(bundle)
        logger.info(f"BoilerplateRegistry initialized with {len(self._bundles)} bundles")

    def register(self, bundle: BoilerplateBundle) -> None:
        """Add or replace a bundle. Replacing keeps the original position."""
        with self._lock:
            self._bundles[bundle.name] = bundle

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._bundles.pop(name, None) is not None

    def get_bundle(self, name: str) -> BoilerplateBundle | None:
        return self._bundles.get(name)

    @property
    def bundles(self) -> list[BoilerplateBundle]:
        with self._lock:
            return list(self._bundles.values())

    def match(self, measure: Measure) -> list[BoilerplateBundle]:
        """All bundles whose matcher accepts the measure, in registration order."""
        return [bundle for bundle in self.bundles if bundle.matcher(measure)]

    def numerator_for(self, measure: Measure) -> str | None:
        """Fixed numerator body from the first matching bundle that has one."""
        for bundle in self.match(measure):
            if bundle.numerator:
                return bundle.numerator
        return None

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "bundle_count": len(self._bundles),
            "bundles": [bundle.name for bundle in self.bundles],
        }


def build_default_registry() -> BoilerplateRegistry:
    """Fresh registry containing the built-in screening bundles."""
    return BoilerplateRegistry(DEFAULT_BUNDLES)


# Module-level singleton
_registry_instance: BoilerplateRegistry | None = None
_registry_lock = threading.Lock()


def get_boilerplate_registry() -> BoilerplateRegistry:
    """Get singleton instance of the default BoilerplateRegistry."""
    global _registry_instance
    if _registry_instance is None:
        with _registry_lock:
            if _registry_instance is None:
                _registry_instance = build_default_registry()
    return _registry_instance


def reset_boilerplate_registry() -> None:
    """Reset the singleton instance (for testing)."""
    global _registry_instance
    with _registry_lock:
        _registry_instance = None
