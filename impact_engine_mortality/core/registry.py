"""
Adapter registry keyed on model variants.

Adapters register under a member of a key enum (``ModelVariant`` for the
models layer). Lookups accept the member or its string value, so names read
from configuration and enum members resolve to the same adapter.
"""

from enum import Enum
from typing import Callable, Dict, Generic, Iterable, List, Type, TypeVar, Union

T = TypeVar("T")


class Registry(Generic[T]):
    """Adapter classes by variant.

    Example:
        MODEL_REGISTRY = Registry(ModelInterface, ModelVariant, "model", reserved=[ModelVariant.BEST])

        @MODEL_REGISTRY.register_decorator(ModelVariant.TIME)
        class TimeTrendAdapter(ModelInterface):
            ...

        model = MODEL_REGISTRY.get("time")
    """

    def __init__(self, base_class: Type[T], keys: Type[Enum], name: str, reserved: Iterable[Enum] = ()):
        """Initialize the registry.

        Args:
            base_class: The base class that registered adapters must implement.
            keys: Enum whose members are the valid registry keys.
            name: Human-readable name for error messages (e.g., "model").
            reserved: Members that are valid names but never have an adapter.
        """
        self._registry: Dict[Enum, Type[T]] = {}
        self._base = base_class
        self._keys = keys
        self._name = name
        self._reserved = frozenset(reserved)

    def _member(self, key: Union[str, Enum]) -> Enum:
        try:
            return self._keys(key)
        except ValueError as e:
            valid = [member.value for member in self._keys]
            raise ValueError(f"Unknown {self._name} '{key}'. Valid names: {valid}") from e

    def register(self, key: Union[str, Enum], cls: Type[T]) -> None:
        """Register an adapter class for one variant.

        Raises:
            ValueError: If the key is unknown or reserved, cls does not
                implement the base class, or a different class already
                holds the key.
        """
        member = self._member(key)
        if member in self._reserved:
            raise ValueError(f"{self._name} '{member.value}' is derived and cannot have an adapter")
        if not issubclass(cls, self._base):
            raise ValueError(f"{cls.__name__} must implement {self._base.__name__}")
        current = self._registry.get(member)
        if current is not None and current is not cls:
            raise ValueError(f"{self._name} '{member.value}' is already registered to {current.__name__}")
        self._registry[member] = cls

    def get(self, key: Union[str, Enum]) -> T:
        """Get a new adapter instance for ``key``.

        Raises:
            ValueError: If the key is unknown, reserved or not registered.
        """
        member = self._member(key)
        if member not in self._registry:
            raise ValueError(f"No {self._name} adapter for '{member.value}'. Available: {self.keys()}")
        return self._registry[member]()

    def keys(self) -> List[str]:
        """Registered variant names, in registration order."""
        return [member.value for member in self._registry]

    def __contains__(self, key: Union[str, Enum]) -> bool:
        try:
            return self._member(key) in self._registry
        except ValueError:
            return False

    def register_decorator(self, key: Union[str, Enum]) -> Callable[[Type[T]], Type[T]]:
        """Return a class decorator that registers the adapter under ``key``."""

        def decorator(cls: Type[T]) -> Type[T]:
            self.register(key, cls)
            return cls

        return decorator
