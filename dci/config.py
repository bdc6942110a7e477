from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class ApplyPolicy(StrEnum):
    # Bind, run and unbind around every single trigger call.
    PER_CALL = "per_call"
    # The caller opens `with ctx.with_roles(): ...` around a block of calls.
    EXTERNALLY_MANAGED = "externally_managed"


class UnsupportedBinding(StrEnum):
    RAISE = "raise"
    WARN = "warn"


ENV_APPLY_POLICY = "DCI_APPLY_POLICY"
ENV_ON_UNSUPPORTED = "DCI_ON_UNSUPPORTED"


class ContextConfig(BaseModel):
    """Per-context runtime settings.

    Contexts carry a class-level default (`Context.config`) that each
    instance may override with `config=...` at construction.
    """

    model_config = ConfigDict(frozen=True)

    apply_policy: ApplyPolicy = ApplyPolicy.PER_CALL
    on_unsupported: UnsupportedBinding = UnsupportedBinding.RAISE

    @classmethod
    def from_env(cls, *, dotenv_path: Path | None = None) -> "ContextConfig":
        """Build a config from `DCI_*` environment variables.

        When `dotenv_path` exists it is loaded first without overriding
        variables that are already set.
        """

        if dotenv_path is not None and dotenv_path.exists():
            from dotenv import load_dotenv

            load_dotenv(dotenv_path=dotenv_path, override=False)

        values: dict[str, str] = {}
        if os.environ.get(ENV_APPLY_POLICY):
            values["apply_policy"] = os.environ[ENV_APPLY_POLICY].strip().lower()
        if os.environ.get(ENV_ON_UNSUPPORTED):
            values["on_unsupported"] = os.environ[ENV_ON_UNSUPPORTED].strip().lower()
        return cls.model_validate(values)


DEFAULT_CONFIG = ContextConfig()
