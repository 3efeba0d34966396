"""Runtime settings for the confidential feed.

Values come from (lowest to highest priority): model defaults, argparse
options registered by ``add_args``, then ``CIPHERFEED_*`` environment
variables. Entrypoints call ``load_dotenv()`` before ``load_settings()``.
"""

from __future__ import annotations

import argparse
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator


class FeedSettings(BaseModel):
    """Settings shared by the controllers, the notifier and the gateway."""

    # Contract the ciphertexts and proofs are bound to
    target_address: str = ""
    gateway_url: str = "http://127.0.0.1:8300"

    # Waiting bounds (seconds). None waits forever.
    confirmation_timeout: float | None = Field(default=120.0, gt=0)
    proof_timeout: float | None = Field(default=300.0, gt=0)

    # Notifier auto-hide delays
    success_notice_seconds: float = Field(default=2.0, gt=0)
    notice_seconds: float = Field(default=3.0, gt=0)

    history_limit: int = Field(default=10, ge=1)

    wallet_name: str = "default"
    wallet_hotkey: str = "default"

    # Gateway server
    host: str = "127.0.0.1"
    port: int = 8300
    token_ttl: int = 3600
    rate_limit_per_hour: int = 600
    # Hex HMAC key shared by the gateway ledger and every client co-processor
    attestation_key: str = ""

    @field_validator("attestation_key")
    @classmethod
    def _hex_key(cls, v: str) -> str:
        v = v.strip()
        if v.startswith("0x"):
            v = v[2:]
        if v:
            bytes.fromhex(v)
        return v

    def attestation_key_bytes(self) -> bytes | None:
        return bytes.fromhex(self.attestation_key) if self.attestation_key else None


# env var name -> settings field
_ENV_FIELDS: dict[str, str] = {
    "CIPHERFEED_CONTRACT__ADDRESS": "target_address",
    "CIPHERFEED_GATEWAY__URL": "gateway_url",
    "CIPHERFEED_GATEWAY__HOST": "host",
    "CIPHERFEED_GATEWAY__PORT": "port",
    "CIPHERFEED_GATEWAY__TOKEN_TTL": "token_ttl",
    "CIPHERFEED_GATEWAY__RATE_LIMIT_PER_HOUR": "rate_limit_per_hour",
    "CIPHERFEED_GATEWAY__ATTESTATION_KEY": "attestation_key",
    "CIPHERFEED_TX__CONFIRMATION_TIMEOUT": "confirmation_timeout",
    "CIPHERFEED_TX__PROOF_TIMEOUT": "proof_timeout",
    "CIPHERFEED_NOTICE__SUCCESS_SECONDS": "success_notice_seconds",
    "CIPHERFEED_NOTICE__SECONDS": "notice_seconds",
    "CIPHERFEED_HISTORY__LIMIT": "history_limit",
    "CIPHERFEED_WALLET__NAME": "wallet_name",
    "CIPHERFEED_WALLET__HOTKEY": "wallet_hotkey",
}

_TIMEOUT_FIELDS = ("confirmation_timeout", "proof_timeout")


def _env_value(field: str, raw: str) -> Any:
    # "none"/"0" disables a timeout
    if field in _TIMEOUT_FIELDS and raw.strip().lower() in ("", "none", "0"):
        return None
    return raw


def add_args(parser: argparse.ArgumentParser) -> None:
    """Register ``--feed.*`` options mirroring FeedSettings."""
    defaults = FeedSettings()
    parser.add_argument(
        "--feed.target_address",
        type=str,
        help="Contract address ciphertexts and proofs are bound to.",
        default=defaults.target_address,
    )
    parser.add_argument(
        "--feed.gateway_url",
        type=str,
        help="Base URL of the record gateway.",
        default=defaults.gateway_url,
    )
    parser.add_argument(
        "--feed.confirmation_timeout",
        type=float,
        help="Seconds to wait for a write to confirm before giving up locally.",
        default=defaults.confirmation_timeout,
    )
    parser.add_argument(
        "--feed.proof_timeout",
        type=float,
        help="Seconds to wait for a decryption proof (including its commit).",
        default=defaults.proof_timeout,
    )
    parser.add_argument(
        "--feed.host",
        type=str,
        help="Gateway bind host.",
        default=defaults.host,
    )
    parser.add_argument(
        "--feed.port",
        type=int,
        help="Gateway bind port.",
        default=defaults.port,
    )
    parser.add_argument(
        "--feed.token_ttl",
        type=int,
        help="Gateway bearer token lifetime in seconds.",
        default=defaults.token_ttl,
    )
    parser.add_argument(
        "--feed.attestation_key",
        type=str,
        help="Hex attestation key shared by the gateway and its clients.",
        default=defaults.attestation_key,
    )


def load_settings(
    args: argparse.Namespace | None = None,
    environ: dict[str, str] | None = None,
) -> FeedSettings:
    """Build FeedSettings from parsed args and the environment."""
    values: dict[str, Any] = {}

    if args is not None:
        for name in FeedSettings.model_fields:
            value = getattr(args, f"feed.{name}", None)
            if name in _TIMEOUT_FIELDS and value == 0:
                # 0 disables a timeout, as in the environment
                values[name] = None
            elif value is not None:
                values[name] = value

    env = os.environ if environ is None else environ
    for env_name, field in _ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is not None:
            values[field] = _env_value(field, raw)

    return FeedSettings(**values)


__all__ = ["FeedSettings", "add_args", "load_settings"]
