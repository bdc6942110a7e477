from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any, ClassVar

from dci.config import DEFAULT_CONFIG, ApplyPolicy, ContextConfig
from dci.core.binding import CapabilityBinder
from dci.core.gate import (
    DISALLOW_MARK,
    TRIGGER_MARK,
    Predicate,
    TriggerGate,
    TriggerInvocation,
    gated_trigger,
    scoped_predicate,
)
from dci.core.lifecycle import ContextLifecycle
from dci.core.role_map import RoleMap
from dci.errors import InvalidRole
from dci.naming import behavior_name, singularize


def _is_collection(obj: Any) -> bool:
    return isinstance(obj, Iterable) and not isinstance(obj, (str, bytes, bytearray, Mapping))


def _check_role_name(cls: type, role: str) -> None:
    if not role.isidentifier() or role.startswith("_"):
        raise InvalidRole(f"Invalid role name: {role!r}")
    if hasattr(cls, role):
        raise InvalidRole(f"Role '{role}' would shadow {cls.__name__}.{role}")


class Context:
    """Base class for interactions between role players.

    Subclasses declare their roles, nest one class per role as its capability
    bundle (role `bank_account` -> `class BankAccount`), and mark public
    operations with `@trigger`::

        class Transfer(Context):
            roles = ("source", "destination")

            class Source(Role):
                def transfer_to(self, other, amount): ...

            @trigger
            def execute(self, amount):
                self.source.transfer_to(self.destination, amount)

    Inside the context, `self.<role>` is the role's current player reference.
    """

    roles: ClassVar[tuple[str, ...]] = ()
    config: ContextConfig = DEFAULT_CONFIG

    _dci_bundles: ClassVar[dict[str, type]] = {}
    _dci_triggers: ClassVar[dict[str, Callable[..., Any]]] = {}
    _dci_predicates: ClassVar[dict[str, Predicate]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        bundles = dict(cls._dci_bundles)
        triggers = dict(cls._dci_triggers)
        predicates = dict(cls._dci_predicates)
        members = list(cls.__dict__.items())

        inherited: dict[str, list[str]] = {}
        for name, predicate in predicates.items():
            if predicate.attr is not None:
                inherited.setdefault(predicate.attr, []).append(name)

        for attr, value in members:
            if isinstance(value, type):
                bundles[attr] = value
            elif inspect.isfunction(value) and attr in inherited and not hasattr(value, DISALLOW_MARK):
                # Overriding an inherited predicate keeps guarding the same triggers.
                setattr(value, DISALLOW_MARK, tuple(inherited[attr]))

        for attr, value in members:
            if not inspect.isfunction(value) or hasattr(value, DISALLOW_MARK):
                continue
            # Overriding an inherited trigger keeps it a trigger.
            if getattr(value, TRIGGER_MARK, False) or attr in triggers:
                body = getattr(value, "__dci_body__", value)
                triggers[attr] = body
                setattr(cls, attr, gated_trigger(attr, body))

        for attr, value in members:
            names = getattr(value, DISALLOW_MARK, None)
            if names is None:
                continue
            body = getattr(value, "__dci_body__", value)
            for name in names:
                if name not in triggers:
                    raise ValueError(f"{cls.__name__}.{attr} disallows unknown trigger '{name}'")
                predicates[name] = Predicate.from_function(body, attr)
            setattr(cls, attr, scoped_predicate(body))

        cls._dci_bundles = bundles
        cls._dci_triggers = triggers
        cls._dci_predicates = predicates

        cls.roles = tuple(cls.roles)
        if len(set(cls.roles)) != len(cls.roles):
            raise InvalidRole(f"{cls.__name__}.roles lists a role twice: {cls.roles}")
        for role in cls.roles:
            _check_role_name(cls, role)

    def __init__(self, *players: Any, config: ContextConfig | None = None, **named: Any) -> None:
        declared = type(self).roles
        if len(players) > len(declared):
            raise TypeError(
                f"{type(self).__name__}() takes {len(declared)} positional role(s) but {len(players)} were given"
            )

        given = dict(zip(declared, players))
        for role, player in named.items():
            if role in given:
                raise TypeError(f"{type(self).__name__}() got multiple players for role '{role}'")
            given[role] = player

        if declared:
            self._check_declared(given)
            pairs = [(role, given[role]) for role in declared]
        else:
            pairs = list(given.items())

        self._setup(pairs, config)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, Any]], *, config: ContextConfig | None = None) -> "Context":
        """Build a context from ordered `(role, player)` pairs."""

        pairs = list(pairs)
        self = cls.__new__(cls)
        if cls.roles:
            self._check_declared({role: player for role, player in pairs})
        self._setup(pairs, config)
        return self

    def _check_declared(self, given: Mapping[str, Any]) -> None:
        declared = type(self).roles
        missing = [role for role in declared if role not in given]
        unknown = [role for role in given if role not in declared]
        if missing:
            raise TypeError(f"{type(self).__name__}() missing role(s): {', '.join(missing)}")
        if unknown:
            raise TypeError(f"{type(self).__name__}() got unexpected role(s): {', '.join(unknown)}")

    def _setup(self, pairs: Sequence[tuple[str, Any]], config: ContextConfig | None) -> None:
        self.config = config if config is not None else type(self).config
        self._role_map = RoleMap()
        self._lifecycle = ContextLifecycle(
            context=self,
            role_map=self._role_map,
            binder=CapabilityBinder(on_unsupported=self.config.on_unsupported),
            resolve_bundle=self._bundle_for,
            policy=self.config.apply_policy,
        )
        self._gate = TriggerGate(
            context=self,
            lifecycle=self._lifecycle,
            triggers=type(self)._dci_triggers,
            predicates=type(self)._dci_predicates,
        )
        for role, player in pairs:
            self._map_role(role, player)

    def _map_role(self, role: str, player: Any) -> None:
        _check_role_name(type(self), role)
        bundles = type(self)._dci_bundles
        name = behavior_name(role)

        # A plural role whose singular bundle exists also maps each member.
        singular = singularize(role)
        singular_name = behavior_name(singular)
        members: list[Any] = []
        if singular != role and singular_name in bundles and _is_collection(player):
            if isinstance(player, Iterator):
                player = list(player)
            members = list(player)

        self._role_map.register(role, player, name if name in bundles else None)
        for idx, item in enumerate(members, start=1):
            member = f"{singular}_{idx}"
            _check_role_name(type(self), member)
            self._role_map.register(member, item, singular_name)

    def _bundle_for(self, role: str) -> type | None:
        name = self._role_map.bundle_name_for(role)
        return type(self)._dci_bundles.get(name) if name else None

    def __getattr__(self, name: str) -> Any:
        role_map = self.__dict__.get("_role_map")
        if role_map is not None and name in role_map:
            return role_map[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    # ---- discovery ----

    def is_player(self, obj: Any) -> bool:
        """True if `obj` is the current reference of any role player."""

        return self._role_map.is_player(obj)

    def has_role(self, name: str, accessor: Callable[[], Any]) -> bool:
        """Whether `name` is a role here, asked on behalf of `accessor()`.

        Only role players of this context may inspect its roles; anyone else
        gets False.
        """

        if not self._role_map.has_role(name):
            return False
        return self.is_player(accessor())

    def all_triggers(self) -> frozenset[str]:
        return self._gate.all_triggers()

    def triggers(self) -> frozenset[str]:
        return self._gate.triggers()

    def disallowed(self, trigger_name: str, *args: Any, **kwargs: Any) -> bool:
        return self._gate.disallowed(trigger_name, *args, **kwargs)

    @property
    def last_invocation(self) -> TriggerInvocation | None:
        return self._gate.last_invocation

    # ---- role application ----

    def with_roles(self, policy: ApplyPolicy = ApplyPolicy.EXTERNALLY_MANAGED) -> AbstractContextManager[None]:
        """Keep roles bound for a block of calls when this context uses `policy`."""

        return self._lifecycle.scope(policy)

    def apply_roles(self) -> None:
        self._lifecycle.apply_roles()

    def remove_roles(self) -> None:
        self._lifecycle.remove_roles()

    def role_players(self) -> Iterator[tuple[str, Any]]:
        return iter(self._role_map.entries())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} roles={list(self._role_map)}>"
