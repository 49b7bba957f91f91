"""Tests for the variant-keyed adapter registry."""

from enum import Enum

import pytest

from impact_engine_mortality.core import Registry
from impact_engine_mortality.models import MODEL_REGISTRY, ModelVariant, get_model_adapter


class Kind(str, Enum):
    A = "a"
    B = "b"
    DERIVED = "derived"


class Base:
    pass


class Impl(Base):
    pass


class Other(Base):
    pass


def _registry():
    return Registry(Base, Kind, "kind", reserved=[Kind.DERIVED])


class TestRegistry:
    """Registration and lookup by enum member or value."""

    def test_member_and_value_resolve_to_same_adapter(self):
        registry = _registry()
        registry.register(Kind.A, Impl)
        assert isinstance(registry.get("a"), Impl)
        assert isinstance(registry.get(Kind.A), Impl)
        assert "a" in registry
        assert registry.keys() == ["a"]

    def test_unknown_key_rejected(self):
        registry = _registry()
        with pytest.raises(ValueError, match="Unknown kind 'c'"):
            registry.register("c", Impl)
        assert "c" not in registry

    def test_reserved_key_rejected(self):
        with pytest.raises(ValueError, match="cannot have an adapter"):
            _registry().register(Kind.DERIVED, Impl)

    def test_base_class_enforced(self):
        with pytest.raises(ValueError, match="must implement Base"):
            _registry().register(Kind.A, dict)

    def test_conflicting_registration_rejected(self):
        registry = _registry()
        registry.register(Kind.A, Impl)
        registry.register(Kind.A, Impl)
        with pytest.raises(ValueError, match="already registered to Impl"):
            registry.register(Kind.A, Other)

    def test_unregistered_key(self):
        with pytest.raises(ValueError, match="No kind adapter for 'b'"):
            _registry().get(Kind.B)

    def test_decorator_returns_class(self):
        registry = _registry()
        decorated = registry.register_decorator(Kind.B)(Other)
        assert decorated is Other
        assert isinstance(registry.get("b"), Other)


class TestModelRegistry:
    """The package's model registry."""

    def test_best_has_no_adapter(self):
        assert ModelVariant.BEST not in MODEL_REGISTRY
        with pytest.raises(ValueError, match="No model adapter for 'best'"):
            get_model_adapter("best")

    def test_unknown_variant_name(self):
        with pytest.raises(ValueError, match="Unknown model 'arima'"):
            get_model_adapter("arima")
