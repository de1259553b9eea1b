"""Approver allow-list."""

from __future__ import annotations

from typing import Iterable, Optional

from .errors import AuthorizationDenied


class Approvers:
    """Identities allowed to approve, reject and manage operators.

    An empty allow-list lets everyone through.
    """

    def __init__(self, identities: Iterable[int] = ()):
        self.identities = frozenset(int(i) for i in identities)

    def is_allowed(self, identity: Optional[int]) -> bool:
        if not self.identities:
            return True
        return identity is not None and int(identity) in self.identities

    def require(self, identity: Optional[int]) -> None:
        if not self.is_allowed(identity):
            raise AuthorizationDenied(identity)

    def __iter__(self):
        return iter(sorted(self.identities))
