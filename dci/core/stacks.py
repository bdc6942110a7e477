from __future__ import annotations

import logging
from typing import Any

from dci.core.binding import unwrap

logger = logging.getLogger(__name__)


class ContextStacks:
    """Side-table of active contexts per player.

    Players are arbitrary caller-owned objects, so the stacks live here keyed
    by the identity of the underlying (unwrapped) player rather than on the
    player itself. A strong reference to the player is kept while its stack
    is non-empty so the id cannot be recycled.
    """

    def __init__(self) -> None:
        self._stacks: dict[int, tuple[Any, list[Any]]] = {}

    def push(self, player: Any, context: Any) -> None:
        base = unwrap(player)
        _, stack = self._stacks.setdefault(id(base), (base, []))
        stack.append(context)

    def pop(self, player: Any, context: Any) -> bool:
        """Remove `context` from the player's stack.

        Returns False when the context was not on the stack.
        """

        key = id(unwrap(player))
        record = self._stacks.get(key)
        if record is None:
            return False

        _, stack = record
        if stack and stack[-1] is context:
            stack.pop()
        else:
            idx = next((i for i in range(len(stack) - 1, -1, -1) if stack[i] is context), None)
            if idx is None:
                return False
            logger.warning(
                "context %s popped out of order for %s (depth %d of %d)",
                type(context).__name__,
                type(record[0]).__name__,
                idx + 1,
                len(stack),
            )
            del stack[idx]

        if not stack:
            del self._stacks[key]
        return True

    def current(self, player: Any) -> Any | None:
        record = self._stacks.get(id(unwrap(player)))
        return record[1][-1] if record else None

    def stack(self, player: Any) -> tuple[Any, ...]:
        record = self._stacks.get(id(unwrap(player)))
        return tuple(record[1]) if record else ()

    def is_empty(self, player: Any) -> bool:
        return id(unwrap(player)) not in self._stacks

    def clear(self) -> None:
        self._stacks.clear()

    def __len__(self) -> int:
        return len(self._stacks)


context_stacks = ContextStacks()


def current_context(player: Any) -> Any | None:
    """The innermost context `player` is currently playing a role in."""

    return context_stacks.current(player)


def context_stack(player: Any) -> tuple[Any, ...]:
    return context_stacks.stack(player)
