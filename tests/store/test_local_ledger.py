"""Tests for the in-process ledger and co-processor."""

import asyncio

import pytest

from cipherfeed.store.interface import CryptoSession, RecordStore
from cipherfeed.store.local import (
    LocalCoprocessor,
    LocalCryptoSession,
    LocalLedger,
    RevertError,
    decode_clear_values,
    encode_clear_values,
)


@pytest.fixture
def coprocessor():
    return LocalCoprocessor()


@pytest.fixture
def ledger(coprocessor):
    return LocalLedger(coprocessor, signer=lambda: "0xABC")


async def _create(ledger, record_id="news-1", value=5, caller="0xABC"):
    sealed = ledger.coprocessor.seal(ledger.address, caller, value)
    tx = await ledger.create(record_id, "title", sealed.ciphertext, sealed.proof, 3, 11, "News: technology")
    return tx, sealed


class TestClearEncoding:

    def test_word_layout(self):
        encoded = encode_clear_values([7])
        assert encoded == "0x" + "0" * 63 + "7"
        assert decode_clear_values(encoded) == [7]

    def test_misaligned_rejected(self):
        with pytest.raises(ValueError):
            decode_clear_values("0x1234")


class TestLocalLedger:

    def test_protocols(self, ledger, coprocessor):
        assert isinstance(ledger, RecordStore)
        assert isinstance(LocalCryptoSession(coprocessor), CryptoSession)

    @pytest.mark.asyncio
    async def test_create_confirms(self, ledger):
        tx, sealed = await _create(ledger)
        receipt = await tx.await_confirmation()
        assert receipt.ok
        assert receipt.tx_id == tx.tx_id
        stored = await ledger.get("news-1")
        assert stored.public_views == 11
        assert stored.creator == "0xABC"
        assert await ledger.get_ciphertext_handle("news-1") == "0x" + sealed.ciphertext.hex()

    @pytest.mark.asyncio
    async def test_input_proof_bound_to_caller(self, ledger):
        sealed = ledger.coprocessor.seal(ledger.address, "0xOTHER", 5)
        with pytest.raises(RevertError, match="Invalid input proof"):
            await ledger.create("news-1", "t", sealed.ciphertext, sealed.proof, 3, 0, "")

    @pytest.mark.asyncio
    async def test_duplicate_id_reverts(self, ledger):
        tx, _ = await _create(ledger)
        await tx.await_confirmation()
        with pytest.raises(RevertError, match="already exists"):
            await _create(ledger)

    @pytest.mark.asyncio
    async def test_unknown_record(self, ledger):
        with pytest.raises(LookupError):
            await ledger.get("news-404")

    @pytest.mark.asyncio
    async def test_verification_requires_valid_proof(self, ledger):
        tx, _ = await _create(ledger)
        await tx.await_confirmation()
        with pytest.raises(RevertError, match="Invalid decryption proof"):
            await ledger.submit_verification("news-1", encode_clear_values([5]), "00" * 32)

    @pytest.mark.asyncio
    async def test_second_verification_rejected(self, ledger, coprocessor):
        tx, _ = await _create(ledger, value=8)
        await tx.await_confirmation()
        handle = await ledger.get_ciphertext_handle("news-1")
        encoding = encode_clear_values([8])
        proof = coprocessor.attest([handle], encoding)

        first = await ledger.submit_verification("news-1", encoding, proof)
        second = await ledger.submit_verification("news-1", encoding, proof)
        r1, r2 = await asyncio.gather(first.await_confirmation(), second.await_confirmation())

        assert r1.ok
        assert not r2.ok
        assert "already verified" in r2.reason
        assert (await ledger.get("news-1")).decrypted_value == 8
        with pytest.raises(RevertError, match="already verified"):
            await ledger.submit_verification("news-1", encoding, proof)

    @pytest.mark.asyncio
    async def test_receipt_reports_pending_then_mined(self, coprocessor):
        ledger = LocalLedger(coprocessor, signer=lambda: "0xABC", block_time=0.05)
        tx, _ = await _create(ledger)
        assert ledger.get_tx(tx.tx_id).receipt() is None
        await tx.await_confirmation()
        assert tx.receipt().ok
        assert ledger.get_tx(tx.tx_id) is None


class TestLocalCryptoSession:

    @pytest.mark.asyncio
    async def test_requires_initialize(self, coprocessor):
        session = LocalCryptoSession(coprocessor)
        with pytest.raises(RuntimeError):
            await session.encrypt("0xT", "0xABC", 1)

    @pytest.mark.asyncio
    async def test_proof_commit_runs_before_result(self, coprocessor):
        session = LocalCryptoSession(coprocessor)
        await session.initialize()
        sealed = await session.encrypt("0xT", "0xABC", 4)
        handle = "0x" + sealed.ciphertext.hex()
        committed = []

        async def _commit(clear_encoding, proof):
            committed.append((clear_encoding, proof))

        result = await session.request_decryption_proof([handle], "0xT", _commit)

        assert result.clear_values == {handle: 4}
        assert committed == [(result.clear_encoding, result.proof)]
        assert coprocessor.verify_attestation([handle], result.clear_encoding, result.proof)

    @pytest.mark.asyncio
    async def test_init_failure(self, coprocessor):
        with pytest.raises(RuntimeError, match="public key fetch failed"):
            await LocalCryptoSession(coprocessor, fail_init=True).initialize()
