from __future__ import annotations


class ContextError(Exception):
    """Base class for everything raised by the dci runtime."""


class DuplicateRole(ContextError):
    pass


class InvalidRole(ContextError, ValueError):
    pass


class RoleNotFound(ContextError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages readable.
        return str(self.args[0]) if self.args else "role not found"


class AccessError(ContextError):
    pass


class BindingUnsupported(ContextError, TypeError):
    pass


class UnbindError(ContextError):
    """One or more roles could not be unbound.

    `failures` holds `(role, exception)` pairs in the order they happened.
    """

    def __init__(self, message: str, failures: list[tuple[str, BaseException]]):
        super().__init__(message)
        self.failures = failures
