"""Data-Context-Interaction contexts for Python objects."""

from dci.config import ApplyPolicy, ContextConfig, UnsupportedBinding
from dci.context import Context
from dci.core.binding import BindingStrategy, Role, RoleWrapper, unwrap
from dci.core.gate import disallow, trigger
from dci.core.stacks import context_stack, current_context
from dci.errors import (
    AccessError,
    BindingUnsupported,
    ContextError,
    DuplicateRole,
    InvalidRole,
    RoleNotFound,
    UnbindError,
)

__all__ = [
    "AccessError",
    "ApplyPolicy",
    "BindingStrategy",
    "BindingUnsupported",
    "Context",
    "ContextConfig",
    "ContextError",
    "DuplicateRole",
    "InvalidRole",
    "Role",
    "RoleNotFound",
    "RoleWrapper",
    "UnbindError",
    "UnsupportedBinding",
    "context_stack",
    "current_context",
    "disallow",
    "trigger",
    "unwrap",
]
