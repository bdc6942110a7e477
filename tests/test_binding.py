from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from dci.config import UnsupportedBinding
from dci.core.binding import (
    BindingStrategy,
    CapabilityBinder,
    MutatingStrategy,
    Role,
    RoleWrapper,
    WrappingStrategy,
    unwrap,
)
from dci.errors import BindingUnsupported


class Account:
    def __init__(self, balance: int) -> None:
        self.balance = balance


@dataclass(slots=True)
class SlottedAccount:
    balance: int


class Auditable:
    def audit_trail(self) -> list[str]:
        return [f"balance={self.balance}"]


class Freezable:
    def freeze(self) -> str:
        return "frozen"


class Announcer(RoleWrapper):
    def announce(self) -> str:
        return f"BALANCE {self.balance}"


class Doubler:
    def doubled(self) -> int:
        return self.real * 2


class Pinned:
    __slots__ = ("pin",)


class Ledger(Role):
    def entries(self) -> list[int]:
        return [self.balance]


@dataclass(frozen=True)
class FrozenAccount:
    balance: int


@dataclass(frozen=True, slots=True)
class FrozenSlottedAccount:
    balance: int


class Loud(Auditable):
    def audit_trail(self) -> list[str]:
        return [line.upper() for line in super().audit_trail()]


def test_mutating_strategy_preserves_identity_and_reverts() -> None:
    acc = Account(50)
    binder = CapabilityBinder()

    binding = binder.bind("account", Auditable, acc)

    assert binding.strategy == BindingStrategy.MUTATING
    assert binding.bound is acc
    assert isinstance(acc, Account)
    assert acc.audit_trail() == ["balance=50"]

    assert binder.unbind(binding) is acc
    assert type(acc) is Account
    assert not hasattr(acc, "audit_trail")


def test_composite_classes_are_shared_between_players() -> None:
    a, b = Account(1), Account(2)
    binder = CapabilityBinder()

    binder.bind("a", Auditable, a)
    binder.bind("b", Auditable, b)

    assert type(a) is type(b)
    assert type(a).__name__ == "Account"


def test_wrapper_bundle_wraps_and_forwards() -> None:
    acc = Account(50)
    binder = CapabilityBinder()

    binding = binder.bind("account", Announcer, acc)
    wrapper = binding.bound

    assert binding.strategy == BindingStrategy.WRAPPING
    assert wrapper is not acc
    assert unwrap(wrapper) is acc
    assert wrapper.announce() == "BALANCE 50"
    assert wrapper == acc

    wrapper.balance = 75
    assert acc.balance == 75

    assert binder.unbind(binding) is acc
    assert not hasattr(acc, "announce")


def test_mixin_on_slotted_player_falls_back_to_adapter() -> None:
    acc = SlottedAccount(10)
    binder = CapabilityBinder()

    assert not MutatingStrategy().supports(acc, Auditable)

    binding = binder.bind("account", Auditable, acc)

    assert binding.strategy == BindingStrategy.WRAPPING
    assert type(binding.bound).__name__ == "AuditableAdapter"
    assert binding.bound.audit_trail() == ["balance=10"]
    assert binder.unbind(binding) is acc
    assert type(acc) is SlottedAccount


def test_mixin_on_builtin_player_is_wrapped() -> None:
    binder = CapabilityBinder()

    binding = binder.bind("number", Doubler, 21)

    assert binding.strategy == BindingStrategy.WRAPPING
    assert binding.bound.doubled() == 42
    assert binder.unbind(binding) == 21


def test_none_bundle_is_a_plain_participation() -> None:
    acc = Account(1)
    binding = CapabilityBinder().bind("account", None, acc)

    assert binding.strategy == BindingStrategy.NONE
    assert binding.bound is acc


def test_unsupported_binding_raises_by_default() -> None:
    binder = CapabilityBinder()

    with pytest.raises(BindingUnsupported) as e:
        binder.bind("number", Pinned, 7)

    assert "Pinned" in str(e.value)
    assert "number" in str(e.value)


def test_unsupported_binding_can_degrade_with_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    binder = CapabilityBinder(on_unsupported=UnsupportedBinding.WARN)

    with caplog.at_level(logging.WARNING, logger="dci.core.binding"):
        binding = binder.bind("number", Pinned, 7)

    assert binding.strategy == BindingStrategy.NONE
    assert binding.bound == 7
    assert binder.unbind(binding) == 7
    assert any("no injected behavior" in r.getMessage() for r in caplog.records)


def test_nested_mutations_unbind_independently() -> None:
    acc = Account(5)
    binder = CapabilityBinder()

    outer = binder.bind("account", Auditable, acc)
    inner = binder.bind("account", Freezable, acc)
    assert acc.freeze() == "frozen"
    assert acc.audit_trail() == ["balance=5"]

    # Out of order on purpose: only the named bundle goes away.
    binder.unbind(outer)
    assert not hasattr(acc, "audit_trail")
    assert acc.freeze() == "frozen"

    binder.unbind(inner)
    assert type(acc) is Account


def test_same_bundle_bound_twice_survives_one_unbind() -> None:
    acc = Account(5)
    binder = CapabilityBinder()

    first = binder.bind("account", Auditable, acc)
    second = binder.bind("account", Auditable, acc)

    binder.unbind(second)
    assert acc.audit_trail() == ["balance=5"]

    binder.unbind(first)
    assert type(acc) is Account


def test_wrong_counter_operation_is_rejected() -> None:
    acc = Account(5)
    CapabilityBinder().bind("account", Auditable, acc)

    with pytest.raises(ValueError):
        WrappingStrategy().unbind(acc, acc, Auditable)

    with pytest.raises(ValueError):
        MutatingStrategy().unbind(acc, acc, Freezable)


@pytest.mark.parametrize(
    ("player", "bundle", "strategy"),
    [
        (Account(3), Auditable, BindingStrategy.MUTATING),
        (Account(3), Announcer, BindingStrategy.WRAPPING),
        (SlottedAccount(3), Auditable, BindingStrategy.WRAPPING),
        (Account(3), Ledger, BindingStrategy.MUTATING),
        (FrozenAccount(3), Ledger, BindingStrategy.WRAPPING),
    ],
)
def test_bind_then_unbind_restores_observable_capabilities(
    player: object, bundle: type, strategy: BindingStrategy
) -> None:
    before_type = type(player)
    before = set(dir(player))
    binder = CapabilityBinder()

    binding = binder.bind("role", bundle, player)
    assert binding.strategy == strategy
    restored = binder.unbind(binding)

    assert restored is player
    assert type(player) is before_type
    assert set(dir(player)) == before


def test_role_bundle_mutates_a_plain_player() -> None:
    acc = Account(40)
    binder = CapabilityBinder()

    binding = binder.bind("account", Ledger, acc)

    assert binding.strategy == BindingStrategy.MUTATING
    assert binding.bound is acc
    assert isinstance(acc, Account)
    assert acc.entries() == [40]
    assert acc.context is None

    binder.unbind(binding)
    assert type(acc) is Account
    assert not hasattr(acc, "entries")


@pytest.mark.parametrize("player", [FrozenAccount(8), FrozenSlottedAccount(8)])
def test_frozen_dataclass_player_is_wrapped(player: object) -> None:
    binder = CapabilityBinder()

    assert not MutatingStrategy().supports(player, Ledger)

    binding = binder.bind("account", Ledger, player)

    assert binding.strategy == BindingStrategy.WRAPPING
    assert binding.bound.entries() == [8]
    assert binder.unbind(binding) is player
    assert type(player) in (FrozenAccount, FrozenSlottedAccount)


def test_bundle_using_super_is_wrapped() -> None:
    acc = Account(3)
    binder = CapabilityBinder()

    binding = binder.bind("account", Loud, acc)

    assert binding.strategy == BindingStrategy.WRAPPING
    assert binding.bound.audit_trail() == ["BALANCE=3"]
    binder.unbind(binding)
    assert type(acc) is Account


def test_refused_class_swap_falls_through_to_wrapping() -> None:
    class Refusing(MutatingStrategy):
        def bind(self, player: object, bundle: type) -> object:
            raise TypeError("__class__ assignment: layout differs")

    binder = CapabilityBinder(strategies=(Refusing(), WrappingStrategy()))
    acc = Account(2)

    binding = binder.bind("account", Ledger, acc)

    assert binding.strategy == BindingStrategy.WRAPPING
    assert binding.bound.entries() == [2]
    assert type(acc) is Account
