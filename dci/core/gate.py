"""Trigger access control.

A trigger is a public context method marked with `@trigger`. Calls go through
`TriggerGate.invoke`, which binds roles (per the context's apply policy),
consults the trigger's `@disallow` predicate with roles bound, runs the body,
and always unbinds before the caller sees the result or the error.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from statemachine import State, StateMachine

from dci.config import ApplyPolicy
from dci.core.lifecycle import ContextLifecycle
from dci.errors import AccessError

logger = logging.getLogger(__name__)

TRIGGER_MARK = "__dci_trigger__"
DISALLOW_MARK = "__dci_disallows__"


def trigger(func: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a context method as a trigger."""

    setattr(func, TRIGGER_MARK, True)
    return func


def disallow(*names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a method as the access predicate of the named trigger(s).

    The predicate receives the trigger's call arguments and runs with roles
    bound. Returning a truthy value denies the call.
    """

    if not names:
        raise TypeError("disallow() needs at least one trigger name")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        setattr(func, DISALLOW_MARK, tuple(names))
        return func

    return decorator


@dataclass(frozen=True, slots=True)
class Predicate:
    func: Callable[..., Any]
    # Predicates with required parameters can only be decided for a concrete call.
    needs_args: bool
    # Predicates declaring only `self` are called without the trigger's arguments.
    takes_args: bool
    attr: str | None = None

    @staticmethod
    def from_function(func: Callable[..., Any], attr: str | None = None) -> "Predicate":
        params = list(inspect.signature(func).parameters.values())[1:]
        needs_args = any(
            p.default is p.empty and p.kind not in (p.VAR_POSITIONAL, p.VAR_KEYWORD) for p in params
        )
        return Predicate(func=func, needs_args=needs_args, takes_args=bool(params), attr=attr)

    def __call__(self, context: Any, args: tuple[Any, ...], kwargs: Mapping[str, Any]) -> bool:
        if not self.takes_args:
            return bool(self.func(context))
        return bool(self.func(context, *args, **kwargs))


class TriggerInvocation(StateMachine):
    """Lifecycle of one trigger call.

    idle -> roles_bound -> access_granted|access_denied -> body_executed
    -> roles_unbound -> idle. Denials and body failures leave through
    roles_unbound as well.

    A call that finds no roles bound for it (externally managed policy
    outside `with_roles()`) starts at the access check. A call whose roles
    stay bound afterwards (nested triggers, `with_roles()` blocks) returns to
    idle through `release` without passing roles_unbound.
    """

    idle = State("Idle", initial=True)
    roles_bound = State("RolesBound")
    access_granted = State("AccessGranted")
    access_denied = State("AccessDenied")
    body_executed = State("BodyExecuted")
    roles_unbound = State("RolesUnbound")

    bind_roles = idle.to(roles_bound)
    grant = roles_bound.to(access_granted) | idle.to(access_granted)
    deny = roles_bound.to(access_denied) | idle.to(access_denied)
    complete = access_granted.to(body_executed)
    unbind_roles = (
        roles_bound.to(roles_unbound)
        | access_granted.to(roles_unbound)
        | access_denied.to(roles_unbound)
        | body_executed.to(roles_unbound)
    )
    finish = roles_unbound.to(idle)
    release = (
        roles_bound.to(idle)
        | access_granted.to(idle)
        | access_denied.to(idle)
        | body_executed.to(idle)
    )

    def __init__(self, *, context_name: str, trigger_name: str):
        self.context_name = context_name
        self.trigger_name = trigger_name
        self.trail: list[str] = []
        super().__init__()
        # Only record transitions taken after the initial state is entered.
        self.trail = [self.current_state.id]

    def after_transition(self, event: str, source: State | None, target: State) -> None:
        self.trail.append(target.id)
        logger.debug(
            "%s#%s %s: %s -> %s",
            self.context_name,
            self.trigger_name,
            event,
            source.id if source is not None else None,
            target.id,
        )

    @property
    def was_denied(self) -> bool:
        return "access_denied" in self.trail

    @property
    def body_ran(self) -> bool:
        return "body_executed" in self.trail


def gated_trigger(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(func)
    def gated(self: Any, *args: Any, **kwargs: Any) -> Any:
        return self._gate.invoke(name, func, args, kwargs)

    setattr(gated, TRIGGER_MARK, True)
    gated.__dci_body__ = func  # type: ignore[attr-defined]
    return gated


def scoped_predicate(func: Callable[..., Any]) -> Callable[..., Any]:
    """Predicates called directly bind roles the same way a trigger call does."""

    @functools.wraps(func)
    def scoped(self: Any, *args: Any, **kwargs: Any) -> Any:
        with self._lifecycle.scope(ApplyPolicy.PER_CALL):
            return func(self, *args, **kwargs)

    setattr(scoped, DISALLOW_MARK, getattr(func, DISALLOW_MARK))
    scoped.__dci_body__ = func  # type: ignore[attr-defined]
    return scoped


class TriggerGate:
    def __init__(
        self,
        *,
        context: Any,
        lifecycle: ContextLifecycle,
        triggers: Mapping[str, Callable[..., Any]],
        predicates: Mapping[str, Predicate],
    ) -> None:
        self.context = context
        self.lifecycle = lifecycle
        self._triggers = triggers
        self._predicates = predicates
        self.last_invocation: TriggerInvocation | None = None

    @property
    def context_name(self) -> str:
        return type(self.context).__name__

    def all_triggers(self) -> frozenset[str]:
        return frozenset(self._triggers)

    def _require_trigger(self, name: str) -> None:
        if name not in self._triggers:
            raise ValueError(f"Unknown trigger: {self.context_name}#{name}")

    def _denied(self, name: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> bool:
        predicate = self._predicates.get(name)
        if predicate is None:
            return False
        return predicate(self.context, args, kwargs)

    def invoke(self, name: str, func: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        machine = TriggerInvocation(context_name=self.context_name, trigger_name=name)
        bound = False
        try:
            with self.lifecycle.scope(ApplyPolicy.PER_CALL):
                bound = self.lifecycle.is_applied
                if bound:
                    machine.bind_roles()
                if self._denied(name, args, kwargs):
                    machine.deny()
                    logger.info("denied %s#%s", self.context_name, name)
                    raise AccessError(f"access to {self.context_name}#{name} is not allowed")
                machine.grant()
                result = func(self.context, *args, **kwargs)
                machine.complete()
        finally:
            # Apply failures happen before any transition; nothing to unwind then.
            if machine.current_state != machine.idle:
                if bound and not self.lifecycle.is_applied:
                    machine.unbind_roles()
                    machine.finish()
                else:
                    machine.release()
            # Set last so an outer trigger's call wins over the triggers it calls.
            self.last_invocation = machine
        return result

    def disallowed(self, name: str, *args: Any, **kwargs: Any) -> bool:
        """Evaluate the predicate of `name` the way a call to it would."""

        self._require_trigger(name)
        with self.lifecycle.scope(ApplyPolicy.PER_CALL):
            return self._denied(name, args, kwargs)

    def triggers(self) -> frozenset[str]:
        """Triggers whose predicate does not currently deny access.

        Predicates that need call arguments cannot be decided here; their
        triggers are listed and still gated when called.
        """

        available: set[str] = set()
        for name in self._triggers:
            predicate = self._predicates.get(name)
            if predicate is None or predicate.needs_args or not self.disallowed(name):
                available.add(name)
        return frozenset(available)
