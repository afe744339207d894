"""
Typed, immutable context store.

A WorkflowContext maps typed ContextKeys to values. Every write returns a
new context; the original is never modified. Writes are type-checked
against the key's declared type.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Generic, Iterable, Iterator, Mapping, Optional, TypeVar

from pydantic_core import core_schema

from flowstate.engine.errors import TypeMismatchError


T = TypeVar("T")


@dataclass(frozen=True)
class ContextKey(Generic[T]):
    """
    A typed key into a WorkflowContext.

    Two keys are equal only if both the name and the declared type match,
    so ``ContextKey("count", int)`` and ``ContextKey("count", str)`` are
    distinct entries.
    """

    name: str
    type: type

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Context key name cannot be empty")
        if not isinstance(self.type, type):
            raise ValueError(f"Context key '{self.name}' type must be a class")

    def is_compatible(self, value: Any) -> bool:
        """Check whether a value may be stored under this key."""
        if value is None:
            return False
        # bool is an int subclass, but a flag is not a count
        if self.type is int and isinstance(value, bool):
            return False
        return isinstance(value, self.type)

    def check(self, value: Any) -> Any:
        if not self.is_compatible(value):
            raise TypeMismatchError(self.name, self.type, value)
        return value

    @classmethod
    def string(cls, name: str) -> "ContextKey[str]":
        return cls(name, str)

    @classmethod
    def integer(cls, name: str) -> "ContextKey[int]":
        return cls(name, int)

    @classmethod
    def floating(cls, name: str) -> "ContextKey[float]":
        return cls(name, float)

    @classmethod
    def boolean(cls, name: str) -> "ContextKey[bool]":
        return cls(name, bool)

    def __repr__(self) -> str:
        return f"ContextKey({self.name!r}, {self.type.__name__})"


class WorkflowContext(Mapping):
    """
    Immutable mapping of ContextKey -> value.

    Usage:
        ctx = WorkflowContext.empty().set(USER_ID, "u-1")
        ctx.get(USER_ID)        # "u-1"
        ctx.without(USER_ID)    # new context, ctx unchanged
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Mapping[ContextKey, Any]] = None):
        values: Dict[ContextKey, Any] = {}
        for key, value in (entries or {}).items():
            if not isinstance(key, ContextKey):
                raise TypeError(f"Context keys must be ContextKey instances, got {type(key).__name__}")
            values[key] = key.check(value)
        self._entries = MappingProxyType(values)

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.is_instance_schema(cls)

    @classmethod
    def empty(cls) -> "WorkflowContext":
        return cls()

    @classmethod
    def of(cls, *pairs: Any) -> "WorkflowContext":
        """Build a context from alternating key, value arguments."""
        if len(pairs) % 2:
            raise ValueError("WorkflowContext.of() expects key/value pairs")
        return cls(dict(zip(pairs[0::2], pairs[1::2])))

    # Mapping protocol

    def __getitem__(self, key: ContextKey) -> Any:
        return self._entries[key]

    def __iter__(self) -> Iterator[ContextKey]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # Reads

    def get(self, key: ContextKey, default: Any = None) -> Any:
        """Get a value, or ``default`` when the key is absent."""
        return self._entries.get(key, default)

    def contains(self, key: ContextKey) -> bool:
        return key in self._entries

    def key_names(self) -> FrozenSet[str]:
        return frozenset(k.name for k in self._entries)

    def find_key(self, name: str) -> Optional[ContextKey]:
        """Look up a stored key by name."""
        for key in self._entries:
            if key.name == name:
                return key
        return None

    # Writes (all return new contexts)

    def set(self, key: ContextKey, value: Any) -> "WorkflowContext":
        """Return a new context with ``key`` bound to ``value``."""
        if not isinstance(key, ContextKey):
            raise TypeError(f"Context keys must be ContextKey instances, got {type(key).__name__}")
        key.check(value)
        entries = dict(self._entries)
        entries[key] = value
        return self._with_entries(entries)

    def without(self, key: ContextKey) -> "WorkflowContext":
        """Return a new context without ``key``."""
        if key not in self._entries:
            return self
        entries = dict(self._entries)
        del entries[key]
        return self._with_entries(entries)

    def update(self, values: Mapping[ContextKey, Any]) -> "WorkflowContext":
        """Return a new context with every pair in ``values`` applied."""
        if not values:
            return self
        entries = dict(self._entries)
        for key, value in values.items():
            if not isinstance(key, ContextKey):
                raise TypeError(f"Context keys must be ContextKey instances, got {type(key).__name__}")
            entries[key] = key.check(value)
        return self._with_entries(entries)

    def merge(self, other: Optional["WorkflowContext"]) -> "WorkflowContext":
        """Right-biased union: values in ``other`` win on shared keys."""
        if other is None or not other:
            return self
        if not self._entries and type(self) is WorkflowContext:
            return other
        entries = dict(self._entries)
        entries.update(other._entries)
        return self._with_entries(entries)

    def _with_entries(self, entries: Dict[ContextKey, Any]) -> "WorkflowContext":
        return WorkflowContext(entries)

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        """Plain ``{name: value}`` view for logging and persistence."""
        return {key.name: value for key, value in self._entries.items()}

    @classmethod
    def from_dict(cls, values: Mapping[str, Any], keys: Iterable[ContextKey]) -> "WorkflowContext":
        """
        Rebuild a context from ``to_dict()`` output.

        Names without a matching key declaration are ignored.
        """
        by_name = {key.name: key for key in keys}
        return cls({by_name[name]: value for name, value in values.items() if name in by_name})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()!r})"


class SecurityContext(WorkflowContext):
    """
    A WorkflowContext carrying caller identity.

    The engine never checks these fields; they travel with the context so
    nodes can make their own decisions.
    """

    __slots__ = ("principal", "roles", "permissions", "attributes")

    def __init__(
        self,
        entries: Optional[Mapping[ContextKey, Any]] = None,
        principal: Optional[str] = None,
        roles: Iterable[str] = (),
        permissions: Iterable[str] = (),
        attributes: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(entries)
        self.principal = principal
        self.roles: FrozenSet[str] = frozenset(roles)
        self.permissions: FrozenSet[str] = frozenset(permissions)
        self.attributes = MappingProxyType(dict(attributes or {}))

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def _with_entries(self, entries: Dict[ContextKey, Any]) -> "SecurityContext":
        return SecurityContext(
            entries,
            principal=self.principal,
            roles=self.roles,
            permissions=self.permissions,
            attributes=self.attributes,
        )

    def __repr__(self) -> str:
        return f"SecurityContext(principal={self.principal!r}, roles={sorted(self.roles)!r}, values={self.to_dict()!r})"
