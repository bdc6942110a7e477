from __future__ import annotations

from collections.abc import Generator

import pytest

from dci.config import ENV_APPLY_POLICY, ENV_ON_UNSUPPORTED


@pytest.fixture(autouse=True)
def _isolate_context_stacks() -> Generator[None, None, None]:
    """Start and end every test with an empty process-wide ContextStack table.

    A test that fails mid-interaction must not leak active contexts into the
    next one.
    """

    from dci.core.stacks import context_stacks

    context_stacks.clear()
    yield
    context_stacks.clear()


@pytest.fixture(autouse=True)
def _isolate_dci_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Hide any DCI_* settings from the developer's shell.

    Setting before deleting makes monkeypatch restore the original state,
    including variables a test loads from a `.env` file.
    """

    for name in (ENV_APPLY_POLICY, ENV_ON_UNSUPPORTED):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
