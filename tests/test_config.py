from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dci import ApplyPolicy, Context, ContextConfig, Role, UnsupportedBinding, trigger


def test_defaults() -> None:
    cfg = ContextConfig()

    assert cfg.apply_policy == ApplyPolicy.PER_CALL
    assert cfg.on_unsupported == UnsupportedBinding.RAISE


def test_config_is_frozen() -> None:
    cfg = ContextConfig()

    with pytest.raises(ValidationError):
        cfg.apply_policy = ApplyPolicy.EXTERNALLY_MANAGED  # type: ignore[misc]


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DCI_APPLY_POLICY", "EXTERNALLY_MANAGED")
    monkeypatch.setenv("DCI_ON_UNSUPPORTED", "warn")

    cfg = ContextConfig.from_env()

    assert cfg.apply_policy == ApplyPolicy.EXTERNALLY_MANAGED
    assert cfg.on_unsupported == UnsupportedBinding.WARN


def test_from_env_rejects_unknown_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DCI_APPLY_POLICY", "sometimes")

    with pytest.raises(ValidationError):
        ContextConfig.from_env()


def test_from_env_loads_dotenv_without_overriding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("DCI_APPLY_POLICY=externally_managed\nDCI_ON_UNSUPPORTED=warn\n", encoding="utf-8")
    monkeypatch.setenv("DCI_ON_UNSUPPORTED", "raise")

    cfg = ContextConfig.from_env(dotenv_path=env_file)

    assert cfg.apply_policy == ApplyPolicy.EXTERNALLY_MANAGED
    assert cfg.on_unsupported == UnsupportedBinding.RAISE


def test_missing_dotenv_is_ignored(tmp_path: Path) -> None:
    assert ContextConfig.from_env(dotenv_path=tmp_path / "nope.env") == ContextConfig()


class Session(Context):
    roles = ("member",)
    config = ContextConfig(apply_policy=ApplyPolicy.EXTERNALLY_MANAGED)

    class Member(Role):
        def ping(self) -> str:
            return "pong"

    @trigger
    def ping(self) -> str:
        return self.member.ping()


class Attendee:
    pass


def test_class_level_config_is_the_default() -> None:
    ctx = Session(Attendee())

    assert ctx.config.apply_policy == ApplyPolicy.EXTERNALLY_MANAGED
    with ctx.with_roles():
        assert ctx.ping() == "pong"


def test_instance_config_overrides_class_default() -> None:
    ctx = Session(Attendee(), config=ContextConfig())

    assert ctx.config.apply_policy == ApplyPolicy.PER_CALL
    assert ctx.ping() == "pong"
    assert Session.config.apply_policy == ApplyPolicy.EXTERNALLY_MANAGED
