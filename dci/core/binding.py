"""Attach and detach capability bundles to role players.

A bundle is a plain class whose methods are granted to a player while it
plays a role. Two strategies are tried, in this order:

1. mutating: the player's class is swapped for a composite subclass of it
   that carries the bundle's methods. Identity is preserved.
2. wrapping: the player is wrapped in a `RoleWrapper` adapter that implements
   the bundle and forwards everything else. Callers must use the returned
   reference while the role is bound.

Bundles that subclass `RoleWrapper` always wrap. Plain mixin bundles wrap when
the player's class cannot be swapped (builtins, slotted objects, classes that
guard `__setattr__` such as frozen dataclasses) or when the bundle relies on
its own class identity (zero-argument `super()`, `__slots__`).

A composite never lists the bundle as a base: the interpreter only allows
`__class__` assignment between classes of one layout lineage, so the bundle's
members are copied onto a direct subclass of the player's class instead.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from types import MemberDescriptorType
from typing import Any

from dci.config import UnsupportedBinding
from dci.errors import BindingUnsupported

logger = logging.getLogger(__name__)

# Py_TPFLAGS_HEAPTYPE: only classes created by `class` statements (or `type()`)
# allow `__class__` assignment on their instances.
_HEAPTYPE = 1 << 9


class BindingStrategy(StrEnum):
    MUTATING = "mutating"
    WRAPPING = "wrapping"
    NONE = "none"


class Role:
    """Optional base for capability bundles.

    Gives role methods access to the interaction they are running in.
    """

    __slots__ = ()

    @property
    def context(self) -> Any:
        from dci.core.stacks import current_context

        return current_context(self)


class RoleWrapper(Role):
    """Adapter that adds a bundle's behavior in front of a wrapped player."""

    __slots__ = ("__wrapped__",)

    def __init__(self, player: Any) -> None:
        object.__setattr__(self, "__wrapped__", player)

    def __getattr__(self, name: str) -> Any:
        if name == "__wrapped__":
            raise AttributeError(name)
        return getattr(self.__wrapped__, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "__wrapped__":
            object.__setattr__(self, name, value)
        else:
            setattr(self.__wrapped__, name, value)

    def __delattr__(self, name: str) -> None:
        delattr(self.__wrapped__, name)

    def __repr__(self) -> str:
        return repr(self.__wrapped__)

    def __eq__(self, other: object) -> bool:
        return self.__wrapped__ == unwrap(other)

    def __hash__(self) -> int:
        return hash(self.__wrapped__)

    def __bool__(self) -> bool:
        return bool(self.__wrapped__)

    def __len__(self) -> int:
        return len(self.__wrapped__)

    def __iter__(self):
        return iter(self.__wrapped__)

    def __contains__(self, item: object) -> bool:
        return item in self.__wrapped__


def unwrap(obj: Any) -> Any:
    """Strip every `RoleWrapper` layer and return the underlying player."""

    while isinstance(obj, RoleWrapper):
        obj = object.__getattribute__(obj, "__wrapped__")
    return obj


def _bundle_label(bundle: Any) -> str:
    return getattr(bundle, "__name__", repr(bundle))


@dataclass(frozen=True, slots=True)
class CapabilityBinding:
    """What was done to a player, so exactly that can be undone."""

    role: str
    bundle: type | None
    strategy: BindingStrategy
    original: Any
    bound: Any


class CapabilityStrategy(ABC):
    kind: BindingStrategy

    @abstractmethod
    def supports(self, player: Any, bundle: type) -> bool:
        raise NotImplementedError

    @abstractmethod
    def bind(self, player: Any, bundle: type) -> Any:
        raise NotImplementedError

    @abstractmethod
    def unbind(self, bound: Any, original: Any, bundle: type) -> Any:
        raise NotImplementedError


def _split(cls: type) -> tuple[type, tuple[type, ...]]:
    # Composite classes remember the class they were built from and the
    # bundles mixed in, oldest first.
    base = cls.__dict__.get("__dci_base__")
    if base is None:
        return cls, ()
    return base, cls.__dict__["__dci_bundles__"]


# Class machinery that stays with the bundle class itself.
_NOT_COPIED = frozenset(
    {
        "__dict__",
        "__weakref__",
        "__slots__",
        "__module__",
        "__qualname__",
        "__doc__",
        "__annotations__",
        "__annotate__",
        "__init__",
        "__new__",
        "__init_subclass__",
        "__orig_bases__",
        "__parameters__",
        "__firstlineno__",
        "__static_attributes__",
    }
)


def _uses_class_cell(value: Any) -> bool:
    if isinstance(value, property):
        return any(_uses_class_cell(f) for f in (value.fget, value.fset, value.fdel))
    func = getattr(value, "__func__", value)
    code = getattr(func, "__code__", None)
    return code is not None and "__class__" in code.co_freevars


@lru_cache(maxsize=None)
def _members(bundle: type) -> tuple[tuple[str, Any], ...]:
    """Everything `bundle` defines, base classes first, ready to copy."""

    members: dict[str, Any] = {}
    for klass in reversed(bundle.__mro__[:-1]):
        for name, value in klass.__dict__.items():
            if name in _NOT_COPIED:
                continue
            if isinstance(value, MemberDescriptorType):
                raise TypeError(f"{bundle.__name__} declares instance slots")
            if _uses_class_cell(value):
                raise TypeError(f"{bundle.__name__}.{name} depends on its defining class")
            members[name] = value
    return tuple(members.items())


@lru_cache(maxsize=None)
def _composite(base: type, bundles: tuple[type, ...]) -> type:
    namespace: dict[str, Any] = {}
    # Most recently bound bundle wins.
    for bundle in bundles:
        namespace.update(_members(bundle))
    namespace.update(
        {
            "__slots__": (),
            "__module__": base.__module__,
            "__qualname__": base.__qualname__,
            "__dci_base__": base,
            "__dci_bundles__": bundles,
        }
    )
    return type(base.__name__, (base,), namespace)


def _same_layout(a: type, b: type) -> bool:
    return (
        a.__basicsize__ == b.__basicsize__
        and a.__itemsize__ == b.__itemsize__
        and a.__dictoffset__ == b.__dictoffset__
        and a.__weakrefoffset__ == b.__weakrefoffset__
    )


class MutatingStrategy(CapabilityStrategy):
    kind = BindingStrategy.MUTATING

    def supports(self, player: Any, bundle: type) -> bool:
        if not isinstance(bundle, type) or issubclass(bundle, RoleWrapper):
            return False
        cls = type(player)
        if isinstance(player, type) or not cls.__flags__ & _HEAPTYPE:
            return False
        # Slotted players and guarded setters (frozen dataclasses, wrappers)
        # keep their class.
        if not cls.__dictoffset__ or cls.__setattr__ is not object.__setattr__:
            return False
        base, bundles = _split(cls)
        try:
            composite = _composite(base, (*bundles, bundle))
        except TypeError:
            return False
        return _same_layout(cls, composite)

    def bind(self, player: Any, bundle: type) -> Any:
        base, bundles = _split(type(player))
        player.__class__ = _composite(base, (*bundles, bundle))
        return player

    def unbind(self, bound: Any, original: Any, bundle: type) -> Any:
        base, bundles = _split(type(bound))
        if bundle not in bundles:
            raise ValueError(f"{_bundle_label(bundle)} is not mixed into {base.__name__} instance")

        # Drop only the most recent occurrence; outer contexts may have bound it too.
        idx = len(bundles) - 1 - bundles[::-1].index(bundle)
        remaining = bundles[:idx] + bundles[idx + 1 :]
        bound.__class__ = _composite(base, remaining) if remaining else base
        return bound


@lru_cache(maxsize=None)
def _adapter(bundle: type) -> type[RoleWrapper]:
    namespace = {"__slots__": (), "__module__": bundle.__module__}
    return type(f"{bundle.__name__}Adapter", (bundle, RoleWrapper), namespace)


class WrappingStrategy(CapabilityStrategy):
    kind = BindingStrategy.WRAPPING

    def supports(self, player: Any, bundle: type) -> bool:
        if not isinstance(bundle, type):
            return False
        if issubclass(bundle, RoleWrapper):
            return True
        try:
            _adapter(bundle)
        except TypeError:
            return False
        return True

    def bind(self, player: Any, bundle: type) -> Any:
        wrapper_cls = bundle if issubclass(bundle, RoleWrapper) else _adapter(bundle)
        return wrapper_cls(player)

    def unbind(self, bound: Any, original: Any, bundle: type) -> Any:
        if not isinstance(bound, RoleWrapper):
            raise ValueError(f"Expected a {_bundle_label(bundle)} wrapper, got {type(bound).__name__}")
        inner = object.__getattribute__(bound, "__wrapped__")
        if inner is not original:
            raise ValueError(f"{_bundle_label(bundle)} wrapper no longer wraps the original player")
        return inner


DEFAULT_STRATEGIES: tuple[CapabilityStrategy, ...] = (MutatingStrategy(), WrappingStrategy())


class CapabilityBinder:
    """Binds bundles to players and reverses exactly what it did."""

    def __init__(
        self,
        *,
        on_unsupported: UnsupportedBinding = UnsupportedBinding.RAISE,
        strategies: tuple[CapabilityStrategy, ...] = DEFAULT_STRATEGIES,
    ) -> None:
        self.on_unsupported = on_unsupported
        self.strategies = strategies
        self._by_kind = {s.kind: s for s in strategies}

    def strategy_for(self, player: Any, bundle: type) -> CapabilityStrategy | None:
        return next((s for s in self.strategies if s.supports(player, bundle)), None)

    def bind(self, role: str, bundle: type | None, player: Any) -> CapabilityBinding:
        if bundle is None:
            return CapabilityBinding(role, None, BindingStrategy.NONE, player, player)

        for strategy in self.strategies:
            if not strategy.supports(player, bundle):
                continue
            try:
                bound = strategy.bind(player, bundle)
            except TypeError as e:
                # The interpreter can still refuse a class swap; try the next strategy.
                logger.debug("%s strategy refused role '%s': %s", strategy.kind.value, role, e)
                continue
            logger.debug("bound %s to role '%s' via %s", _bundle_label(bundle), role, strategy.kind.value)
            return CapabilityBinding(role, bundle, strategy.kind, player, bound)

        msg = f"No binding strategy supports {_bundle_label(bundle)} on {type(player).__name__} (role '{role}')"
        if self.on_unsupported == UnsupportedBinding.RAISE:
            raise BindingUnsupported(msg)
        logger.warning("%s; the role will have no injected behavior", msg)
        return CapabilityBinding(role, bundle, BindingStrategy.NONE, player, player)

    def unbind(self, binding: CapabilityBinding) -> Any:
        """Undo `binding` and return the original player reference."""

        if binding.strategy == BindingStrategy.NONE or binding.bundle is None:
            return binding.original

        strategy = self._by_kind.get(binding.strategy)
        if strategy is None:
            raise BindingUnsupported(f"Binder has no {binding.strategy.value} strategy to unbind '{binding.role}'")

        strategy.unbind(binding.bound, binding.original, binding.bundle)
        logger.debug(
            "unbound %s from role '%s' via %s", _bundle_label(binding.bundle), binding.role, binding.strategy.value
        )
        return binding.original
