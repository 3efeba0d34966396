"""Shared fixtures: a connected caller and a feed over the in-process ledger."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from cipherfeed.config import FeedSettings
from cipherfeed.identity import WalletIdentity
from cipherfeed.service import build_local_feed


CALLER = "0xABC"


def make_identity(address: str = CALLER, connected: bool = True) -> WalletIdentity:
    identity = WalletIdentity(SimpleNamespace(hotkey=SimpleNamespace(ss58_address=address)))
    if connected:
        identity.connect()
    return identity


@pytest.fixture
def identity():
    return make_identity()


@pytest.fixture
def settings():
    return FeedSettings(
        success_notice_seconds=0.05,
        notice_seconds=0.05,
        confirmation_timeout=5.0,
        proof_timeout=5.0,
    )


@pytest.fixture
def local_feed(identity, settings):
    """(feed, ledger) pair. The session is not initialized yet."""
    return build_local_feed(identity, settings)


async def seed_record(ledger, record_id: str, score: int, title: str = "Seeded", creator: str = CALLER) -> str:
    """Write a confirmed, unverified record straight to the ledger."""
    sealed = ledger.coprocessor.seal(ledger.address, creator, score)
    tx = await ledger.create(record_id, title, sealed.ciphertext, sealed.proof, 5, 42, "News: technology", sender=creator)
    receipt = await tx.await_confirmation()
    assert receipt.ok
    return await ledger.get_ciphertext_handle(record_id)


@pytest.fixture
def seed():
    return seed_record


@pytest.fixture
def identity_factory():
    return make_identity
