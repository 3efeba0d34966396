"""HTTP gateway integration test.

Spins up a real RecordGatewayServer on localhost and drives a feed through
an HTTPRecordStore client: challenge-response auth, create, transaction
polling and verification over the wire.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import bittensor as bt
import httpx
import pytest

from cipherfeed.auth import GatewayAccessPolicy
from cipherfeed.config import FeedSettings
from cipherfeed.errors import is_already_verified
from cipherfeed.identity import WalletIdentity
from cipherfeed.service import ConfidentialFeed, build_gateway_feed
from cipherfeed.store.http_client import GatewayError, HTTPRecordStore
from cipherfeed.store.http_server import RecordGatewayServer
from cipherfeed.store.local import LocalCoprocessor, LocalCryptoSession, LocalLedger, encode_clear_values


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def caller_wallet():
    return SimpleNamespace(hotkey=bt.Keypair.create_from_mnemonic(bt.Keypair.generate_mnemonic()))


@pytest.fixture
def coprocessor():
    return LocalCoprocessor()


@pytest.fixture
def ledger(coprocessor):
    return LocalLedger(coprocessor, block_time=0.02)


def _client(port, wallet):
    return HTTPRecordStore(
        gateway_url=f"http://127.0.0.1:{port}",
        wallet=wallet,
        timeout=10.0,
        max_retries=1,
        poll_interval=0.02,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestHTTPGateway:
    """End-to-end gateway tests with real server + client."""

    async def test_create_and_reveal_over_http(self, caller_wallet, coprocessor, ledger):
        server = RecordGatewayServer(ledger, GatewayAccessPolicy(), host="127.0.0.1", port=18941)
        try:
            await server.start()
            await asyncio.sleep(0.2)

            store = _client(18941, caller_wallet)
            identity = WalletIdentity(caller_wallet)
            identity.connect()
            feed = ConfidentialFeed(
                identity,
                LocalCryptoSession(coprocessor),
                store,
                FeedSettings(target_address=ledger.address, confirmation_timeout=5.0, proof_timeout=5.0),
            )
            try:
                assert (await feed.initialize_session()).ok

                created = await feed.submit({"title": "Over the wire", "score": "6"})
                assert created.ok, created.message
                record_id = created.value

                stored = await ledger.get(record_id)
                assert stored.creator == caller_wallet.hotkey.ss58_address

                revealed = await feed.reveal(record_id)
                assert revealed.ok, revealed.message
                assert revealed.value == 6

                listed = await feed.list_records()
                assert listed.value[0].verified
                assert listed.value[0].revealed_score == 6
                assert (await feed.check_availability()).value is True
            finally:
                await feed.close()
                await store.close()
        finally:
            await server.stop()

    async def test_reverts_and_missing_records(self, caller_wallet, coprocessor, ledger):
        server = RecordGatewayServer(ledger, GatewayAccessPolicy(), host="127.0.0.1", port=18942)
        try:
            await server.start()
            await asyncio.sleep(0.2)
            store = _client(18942, caller_wallet)
            try:
                caller = caller_wallet.hotkey.ss58_address
                sealed = coprocessor.seal(ledger.address, caller, 3)
                tx = await store.create("news-1", "t", sealed.ciphertext, sealed.proof, 3, 5, "News: politics")
                receipt = await tx.await_confirmation()
                assert receipt.ok
                assert ledger.get_tx(tx.tx_id) is None

                with pytest.raises(GatewayError, match="already exists"):
                    await store.create("news-1", "t", sealed.ciphertext, sealed.proof, 3, 5, "")

                handle = await store.get_ciphertext_handle("news-1")
                encoding = encode_clear_values([3])
                proof = coprocessor.attest([handle], encoding)
                tx = await store.submit_verification("news-1", encoding, proof)
                assert (await tx.await_confirmation()).ok

                with pytest.raises(GatewayError) as exc_info:
                    await store.submit_verification("news-1", encoding, proof)
                assert is_already_verified(exc_info.value)

                with pytest.raises(LookupError):
                    await store.get("news-404")
                assert await store.list_ids() == ["news-1"]
            finally:
                await store.close()
        finally:
            await server.stop()

    async def test_auth_required(self, caller_wallet, ledger):
        allowed = {caller_wallet.hotkey.ss58_address}
        server = RecordGatewayServer(
            ledger, GatewayAccessPolicy(allowed_hotkeys=allowed), host="127.0.0.1", port=18943,
        )
        try:
            await server.start()
            await asyncio.sleep(0.2)

            async with httpx.AsyncClient() as raw:
                resp = await raw.get("http://127.0.0.1:18943/records")
                assert resp.status_code == 401
                resp = await raw.get("http://127.0.0.1:18943/status")
                assert resp.status_code == 200
                assert resp.json()["contract"] == ledger.address

            stranger = SimpleNamespace(hotkey=bt.Keypair.create_from_mnemonic(bt.Keypair.generate_mnemonic()))
            outsider = _client(18943, stranger)
            try:
                with pytest.raises(ConnectionError):
                    await outsider.list_ids()
            finally:
                await outsider.close()
        finally:
            await server.stop()

    async def test_shared_attestation_key_lets_remote_clients_write(self, caller_wallet):
        key = bytes.fromhex("5a" * 32)
        ledger = LocalLedger(LocalCoprocessor(key=key), block_time=0.02)
        server = RecordGatewayServer(ledger, GatewayAccessPolicy(), host="127.0.0.1", port=18944)
        try:
            await server.start()
            await asyncio.sleep(0.2)

            identity = WalletIdentity(caller_wallet)
            identity.connect()
            settings = FeedSettings(
                target_address=ledger.address,
                gateway_url="http://127.0.0.1:18944",
                attestation_key=key.hex(),
                confirmation_timeout=5.0,
                proof_timeout=5.0,
            )
            feed, store = build_gateway_feed(identity, settings)
            assert feed.submission.crypto.coprocessor is not ledger.coprocessor
            try:
                assert (await feed.initialize_session()).ok

                created = await feed.submit({"title": "Shared key", "score": "8"})
                assert created.ok, created.message

                revealed = await feed.reveal(created.value)
                assert revealed.ok, revealed.message
                assert revealed.value == 8
                assert (await ledger.get(created.value)).verified
            finally:
                await feed.close()
                await store.close()
        finally:
            await server.stop()

    async def test_mismatched_attestation_key_is_rejected(self, caller_wallet):
        ledger = LocalLedger(LocalCoprocessor(key=bytes.fromhex("5a" * 32)), block_time=0.02)
        server = RecordGatewayServer(ledger, GatewayAccessPolicy(), host="127.0.0.1", port=18945)
        try:
            await server.start()
            await asyncio.sleep(0.2)

            identity = WalletIdentity(caller_wallet)
            identity.connect()
            settings = FeedSettings(
                target_address=ledger.address,
                gateway_url="http://127.0.0.1:18945",
                attestation_key="a5" * 32,
                confirmation_timeout=5.0,
                proof_timeout=5.0,
            )
            feed, store = build_gateway_feed(identity, settings)
            try:
                assert (await feed.initialize_session()).ok
                created = await feed.submit({"title": "Wrong key", "score": "8"})
                assert not created.ok
                assert await ledger.list_ids() == []
            finally:
                await feed.close()
                await store.close()
        finally:
            await server.stop()
