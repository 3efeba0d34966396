"""Gateway access policy: hotkey challenge-response and bearer tokens.

A client proves it holds a hotkey by signing a one-time nonce; the
authenticated hotkey then becomes the signer of its ledger writes.
Fail-closed: any verification failure rejects.
"""

from __future__ import annotations

import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass

import bittensor as bt


@dataclass
class _PendingChallenge:
    nonce: str
    hotkey: str
    created_at: float
    ttl: float = 120.0

    @property
    def expired(self) -> bool:
        return time.time() > self.created_at + self.ttl


@dataclass
class _TokenEntry:
    hotkey: str
    created_at: float
    ttl: float

    @property
    def expired(self) -> bool:
        return time.time() > self.created_at + self.ttl


def _hk(hotkey: str | None) -> str:
    """Truncate hotkey for log readability."""
    return hotkey[:16] if hotkey else "none"


class GatewayAccessPolicy:
    """Challenge-response auth with an optional hotkey allowlist."""

    def __init__(
        self,
        allowed_hotkeys: set[str] | None = None,
        token_ttl: int = 3600,
        rate_limit_per_hour: int = 600,
        max_tokens: int = 500,
    ):
        self.allowed_hotkeys = allowed_hotkeys
        self.token_ttl = token_ttl
        self.rate_limit_per_hour = rate_limit_per_hour
        self.max_tokens = max_tokens

        self._challenges: dict[str, _PendingChallenge] = {}
        # token -> entry, oldest first for LRU eviction
        self._tokens: OrderedDict[str, _TokenEntry] = OrderedDict()
        self._request_log: dict[str, list[float]] = {}

    def is_allowed(self, hotkey: str) -> bool:
        if not hotkey:
            return False
        if self.allowed_hotkeys is None:
            return True
        return hotkey in self.allowed_hotkeys

    def issue_challenge(self, hotkey: str) -> str:
        """Generate a random nonce for a hotkey to sign."""
        self._challenges = {k: v for k, v in self._challenges.items() if not v.expired}
        nonce = secrets.token_hex(32)
        self._challenges[nonce] = _PendingChallenge(nonce=nonce, hotkey=hotkey, created_at=time.time())
        return nonce

    def verify_response(self, hotkey: str, nonce: str, signature: str) -> str | None:
        """Verify a signed nonce. Returns a bearer token, or None on failure."""
        hk = _hk(hotkey)

        challenge = self._challenges.pop(nonce, None)
        if challenge is None:
            bt.logging.warning({"gateway_auth": {"event": "verify_failed", "hotkey": hk, "reason": "unknown_nonce"}})
            return None
        if challenge.expired:
            bt.logging.warning({"gateway_auth": {"event": "verify_failed", "hotkey": hk, "reason": "expired_nonce"}})
            return None
        if challenge.hotkey != hotkey:
            bt.logging.warning({"gateway_auth": {"event": "verify_failed", "hotkey": hk, "reason": "hotkey_mismatch"}})
            return None

        try:
            sig_bytes = bytes.fromhex(signature)
            keypair = bt.Keypair(ss58_address=hotkey)
            if not keypair.verify(nonce.encode(), sig_bytes):
                bt.logging.warning({"gateway_auth": {"event": "verify_failed", "hotkey": hk, "reason": "bad_signature"}})
                return None
        except Exception:
            bt.logging.warning({"gateway_auth": {"event": "verify_failed", "hotkey": hk, "reason": "signature_exception"}})
            return None

        token = secrets.token_hex(32)
        while len(self._tokens) >= self.max_tokens:
            self._tokens.popitem(last=False)
        self._tokens[token] = _TokenEntry(hotkey=hotkey, created_at=time.time(), ttl=self.token_ttl)
        bt.logging.info({"gateway_auth": {"event": "token_issued", "hotkey": hk}})
        return token

    def validate_token(self, token: str) -> str | None:
        """Return the hotkey behind a bearer token, or None."""
        entry = self._tokens.get(token)
        if entry is None:
            return None
        if entry.expired:
            self._tokens.pop(token, None)
            return None
        self._tokens.move_to_end(token)
        return entry.hotkey

    def check_rate_limit(self, hotkey: str) -> bool:
        """True if the hotkey is within its hourly request budget."""
        now = time.time()
        log = [t for t in self._request_log.get(hotkey, []) if now - t < 3600.0]
        log.append(now)
        self._request_log[hotkey] = log

        allowed = len(log) <= self.rate_limit_per_hour
        if not allowed:
            bt.logging.warning({"gateway_auth": {"event": "rate_limited", "hotkey": _hk(hotkey), "requests_in_window": len(log)}})
        return allowed


__all__ = ["GatewayAccessPolicy"]
