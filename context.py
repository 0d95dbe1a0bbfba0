from dataclasses import dataclass
from typing import Optional

from errors import NotAuthenticated


@dataclass(frozen=True)
class OwnerContext:
    """Identifies whose data an operation may read and write."""

    owner_id: str


def require_owner(owner: Optional[OwnerContext]) -> OwnerContext:
    if owner is None or not str(owner.owner_id or "").strip():
        raise NotAuthenticated()
    return owner
