from __future__ import annotations

import re

_WORD_START = re.compile(r"(?:^|_)([a-z])")
_INDEX_SUFFIX = re.compile(r"_\d+")


def behavior_name(role: str) -> str:
    """Bundle class name for a role: `bank_account` -> `BankAccount`.

    Numbered sub-roles share their collection member's bundle, so
    `account_2` -> `Account`.
    """

    camel = _WORD_START.sub(lambda m: m.group(1).upper(), role)
    return _INDEX_SUFFIX.sub("", camel)


def singularize(name: str) -> str:
    # Good enough for role names; irregular plurals need an explicit bundle.
    if name.endswith("ies"):
        return name[: -len("ies")] + "y"
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name
