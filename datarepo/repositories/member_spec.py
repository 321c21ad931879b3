"""Reusable Member specifications."""

from typing import Optional

from datarepo.repositories.specification import Specification


def username(name: str) -> Specification:
    return Specification(lambda root: root.get("username") == name)


def team_name(name: Optional[str]) -> Optional[Specification]:
    """Members of the named team; None (no restriction) for an empty name."""
    if not name:
        return None
    return Specification(lambda root: root.join("team").name == name)


def age_between(low: int, high: int) -> Specification:
    return Specification(lambda root: root.get("age").between(low, high))
