from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any

from dci.config import ApplyPolicy
from dci.core.binding import CapabilityBinder, CapabilityBinding
from dci.core.role_map import RoleMap
from dci.core.stacks import ContextStacks, context_stacks
from dci.errors import UnbindError

logger = logging.getLogger(__name__)


BundleResolver = Callable[[str], type | None]


class ContextLifecycle:
    """Binds every role of one context before an interaction and unbinds after.

    `apply_roles` is all-or-nothing: when a role fails to bind, the roles
    already bound are unbound again before the error propagates.

    Nested `apply_roles` calls on the same context only count depth; the
    outermost `remove_roles` does the unbinding.
    """

    def __init__(
        self,
        *,
        context: Any,
        role_map: RoleMap,
        binder: CapabilityBinder,
        resolve_bundle: BundleResolver,
        policy: ApplyPolicy = ApplyPolicy.PER_CALL,
        stacks: ContextStacks | None = None,
    ) -> None:
        self.context = context
        self.role_map = role_map
        self.binder = binder
        self.resolve_bundle = resolve_bundle
        self.policy = policy
        self.stacks = stacks if stacks is not None else context_stacks
        self._bindings: dict[str, CapabilityBinding] = {}
        self._depth = 0

    @property
    def is_applied(self) -> bool:
        return self._depth > 0

    @property
    def bindings(self) -> Mapping[str, CapabilityBinding]:
        return MappingProxyType(self._bindings)

    def _label(self) -> str:
        return type(self.context).__name__

    def apply_roles(self) -> None:
        self._depth += 1
        if self._depth > 1:
            return

        try:
            for role, player in self.role_map.entries():
                binding = self.binder.bind(role, self.resolve_bundle(role), player)
                self._bindings[role] = binding
                self.role_map.assign(role, binding.bound)
                self.stacks.push(binding.bound, self.context)
        except BaseException:
            logger.debug("rolling back %d bound role(s) of %s", len(self._bindings), self._label())
            self._depth = 0
            self._unbind_all(reverse=True)
            raise

        logger.debug("applied roles %s for %s", list(self._bindings), self._label())

    def remove_roles(self, *, strict: bool = True) -> None:
        if self._depth == 0:
            return
        self._depth -= 1
        if self._depth > 0:
            return

        failures = self._unbind_all()
        logger.debug("removed roles for %s", self._label())
        if failures and strict:
            roles = ", ".join(role for role, _ in failures)
            raise UnbindError(f"Failed to unbind role(s) {roles} of {self._label()}", failures)

    def _unbind_all(self, *, reverse: bool = False) -> list[tuple[str, BaseException]]:
        failures: list[tuple[str, BaseException]] = []
        roles = list(self._bindings)
        if reverse:
            roles.reverse()

        for role in roles:
            # Taken out first so each binding is undone at most once.
            binding = self._bindings.pop(role)
            try:
                self.stacks.pop(binding.bound, self.context)
                original = self.binder.unbind(binding)
            except Exception as e:
                logger.exception("failed to unbind role '%s' of %s", role, self._label())
                failures.append((role, e))
                original = binding.original
            self.role_map.assign(role, original)

        return failures

    @contextmanager
    def scope(self, policy: ApplyPolicy) -> Iterator[None]:
        """Apply roles for the block when `policy` is this context's policy.

        Roles are removed on every exit. If the block raised, unbind failures
        are only logged so the block's own error reaches the caller.
        """

        if policy != self.policy:
            yield
            return

        self.apply_roles()
        try:
            yield
        except BaseException:
            self.remove_roles(strict=False)
            raise
        self.remove_roles()
