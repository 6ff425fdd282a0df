"""
Authorization state store (CSRF protection for the OAuth redirect).

A state is a random nonce bound to the connector type that issued it.  It
is consumed exactly once at callback and expires after ``ttl`` seconds so
abandoned authorizations do not accumulate.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass(frozen=True)
class AuthorizationState:
    nonce: str
    connector_type: str
    created_at: float


class AuthorizationStateStore:
    def __init__(self, ttl: float = 600, clock: Callable[[], float] = time.time):
        self._ttl = ttl
        self._clock = clock
        self._pending: Dict[str, AuthorizationState] = {}

    def issue(self, connector_type: str) -> AuthorizationState:
        self._sweep()
        state = AuthorizationState(
            nonce=secrets.token_urlsafe(32),
            connector_type=connector_type,
            created_at=self._clock(),
        )
        self._pending[state.nonce] = state
        return state

    def consume(self, nonce: str | None, connector_type: str) -> bool:
        """
        Pop the state and return True if it is known, unexpired and was
        issued for ``connector_type``.  The nonce is discarded either way.
        """
        self._sweep()
        if not nonce:
            return False
        state = self._pending.pop(nonce, None)
        if state is None:
            return False
        return secrets.compare_digest(state.connector_type, connector_type)

    def discard(self, nonce: str | None) -> None:
        if nonce:
            self._pending.pop(nonce, None)

    def __len__(self) -> int:
        return len(self._pending)

    def _sweep(self) -> None:
        cutoff = self._clock() - self._ttl
        for nonce in [n for n, s in self._pending.items() if s.created_at <= cutoff]:
            del self._pending[nonce]
