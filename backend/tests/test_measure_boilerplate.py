"""Tests for Measure Boilerplate Registry."""

import pytest

from measure_compiler.schemas import Measure
from measure_compiler.services.measure_boilerplate import (
    DEFAULT_BUNDLES,
    BoilerplateBundle,
    BoilerplateRegistry,
    build_default_registry,
    get_boilerplate_registry,
    keyword_matcher,
    reset_boilerplate_registry,
)


def bundle(name: str, numerator: str | None = None, **terms) -> BoilerplateBundle:
    return BoilerplateBundle(
        name=name,
        label=f"{name} helpers",
        matcher=keyword_matcher(**terms),
        definitions=f'define "{name}":\n  true',
        exclusions=[f'"{name}"'],
        numerator=numerator,
    )


class TestKeywordMatcher:
    """Test title and id matching."""

    def test_title_terms_all_required(self):
        matcher = keyword_matcher(title_terms=("breast", "screen"))
        assert matcher(Measure(title="Breast Cancer Screening")) is True
        assert matcher(Measure(title="Breast Cancer Treatment")) is False

    def test_id_terms_any(self):
        matcher = keyword_matcher(id_terms=("cms124", "CMS999"))
        assert matcher(Measure(id="CMS124v12")) is True
        assert matcher(Measure(id="CMS130v12")) is False

    def test_empty_matcher_never_matches(self):
        assert keyword_matcher()(Measure(id="CMS130v12", title="Anything")) is False


# ============================================================================
# Registry Tests
# ============================================================================


class TestRegistry:
    """Test registration and lookup."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.registry = BoilerplateRegistry()

    def test_starts_empty(self):
        assert self.registry.bundles == []
        assert self.registry.get_stats() == {"bundle_count": 0, "bundles": []}

    def test_registration_order(self):
        """Test matches come back in registration order."""
        self.registry.register(bundle("first", title_terms=("screening",)))
        self.registry.register(bundle("second", title_terms=("screening",), numerator="  true"))
        matched = self.registry.match(Measure(title="Screening"))
        assert [b.name for b in matched] == ["first", "second"]

    def test_numerator_from_first_bundle_with_one(self):
        self.registry.register(bundle("first", title_terms=("screening",)))
        self.registry.register(bundle("second", title_terms=("screening",), numerator="  second"))
        self.registry.register(bundle("third", title_terms=("screening",), numerator="  third"))
        assert self.registry.numerator_for(Measure(title="Screening")) == "  second"

    def test_no_match(self):
        self.registry.register(bundle("first", title_terms=("screening",), numerator="  true"))
        measure = Measure(title="Diabetes")
        assert self.registry.match(measure) == []
        assert self.registry.numerator_for(measure) is None

    def test_replace_keeps_position(self):
        """Test re-registering a name replaces it in place."""
        self.registry.register(bundle("first", id_terms=("CMS1",)))
        self.registry.register(bundle("second", id_terms=("CMS1",)))
        self.registry.register(bundle("first", id_terms=("CMS1",), numerator="  replaced"))
        assert [b.name for b in self.registry.bundles] == ["first", "second"]
        assert self.registry.get_bundle("first").numerator == "  replaced"

    def test_unregister(self):
        self.registry.register(bundle("first", id_terms=("CMS1",)))
        assert self.registry.unregister("first") is True
        assert self.registry.unregister("first") is False
        assert self.registry.get_bundle("first") is None


class TestDefaultBundles:
    """Test the built-in screening bundles."""

    @pytest.fixture(autouse=True)
    def setup(self):
        """Set up test fixtures."""
        self.registry = build_default_registry()

    def test_default_order(self):
        assert self.registry.get_stats()["bundles"] == ["colorectal", "cervical", "breast"]
        assert len(DEFAULT_BUNDLES) == 3

    def test_colorectal_by_id(self, colorectal_measure):
        matched = self.registry.match(colorectal_measure)
        assert [b.name for b in matched] == ["colorectal"]
        assert self.registry.numerator_for(colorectal_measure).lstrip().startswith(
            'exists "Colonoscopy Performed"'
        )

    def test_cervical_by_title(self):
        matched = self.registry.match(Measure(id="X1", title="Cervical Cancer Screening"))
        assert [b.name for b in matched] == ["cervical"]
        assert '"Has Hysterectomy"' in matched[0].exclusions

    def test_breast_needs_both_title_terms(self):
        assert self.registry.match(Measure(id="X1", title="Breast Cancer Screening"))
        assert self.registry.match(Measure(id="X1", title="Breast Cancer Treatment")) == []
        assert self.registry.match(Measure(id="CMS125v12", title="Mammography"))

    def test_unrelated_measure(self, diabetes_measure):
        assert self.registry.match(diabetes_measure) == []


class TestSingleton:
    """Test module-level registry."""

    def test_singleton_pattern(self):
        reset_boilerplate_registry()
        assert get_boilerplate_registry() is get_boilerplate_registry()
        assert len(get_boilerplate_registry().bundles) == 3

    def test_singleton_reset(self):
        registry = get_boilerplate_registry()
        reset_boilerplate_registry()
        assert get_boilerplate_registry() is not registry
