"""Tests for gateway challenge-response auth, tokens and rate limiting."""

import bittensor as bt
import pytest

from cipherfeed.auth import GatewayAccessPolicy


@pytest.fixture
def keypair():
    return bt.Keypair.create_from_mnemonic(bt.Keypair.generate_mnemonic())


def _sign(keypair, nonce):
    return keypair.sign(nonce.encode()).hex()


class TestChallengeResponse:

    def test_full_flow(self, keypair):
        policy = GatewayAccessPolicy()
        hotkey = keypair.ss58_address
        nonce = policy.issue_challenge(hotkey)
        assert len(nonce) == 64

        token = policy.verify_response(hotkey, nonce, _sign(keypair, nonce))

        assert token is not None
        assert policy.validate_token(token) == hotkey

    def test_nonce_is_single_use(self, keypair):
        policy = GatewayAccessPolicy()
        hotkey = keypair.ss58_address
        nonce = policy.issue_challenge(hotkey)
        sig = _sign(keypair, nonce)
        assert policy.verify_response(hotkey, nonce, sig) is not None
        assert policy.verify_response(hotkey, nonce, sig) is None

    def test_wrong_signer_rejected(self, keypair):
        other = bt.Keypair.create_from_mnemonic(bt.Keypair.generate_mnemonic())
        policy = GatewayAccessPolicy()
        nonce = policy.issue_challenge(keypair.ss58_address)
        assert policy.verify_response(keypair.ss58_address, nonce, _sign(other, nonce)) is None

    def test_hotkey_mismatch_rejected(self, keypair):
        policy = GatewayAccessPolicy()
        nonce = policy.issue_challenge("5Fsomeoneelse")
        assert policy.verify_response(keypair.ss58_address, nonce, _sign(keypair, nonce)) is None

    def test_garbage_signature_rejected(self, keypair):
        policy = GatewayAccessPolicy()
        nonce = policy.issue_challenge(keypair.ss58_address)
        assert policy.verify_response(keypair.ss58_address, nonce, "not-hex") is None


class TestAccessPolicy:

    def test_allowlist(self):
        policy = GatewayAccessPolicy(allowed_hotkeys={"hk_a"})
        assert policy.is_allowed("hk_a")
        assert not policy.is_allowed("hk_b")
        assert not policy.is_allowed("")

    def test_open_by_default(self):
        assert GatewayAccessPolicy().is_allowed("anyone")

    def test_unknown_token(self):
        assert GatewayAccessPolicy().validate_token("deadbeef") is None

    def test_expired_token(self, keypair):
        policy = GatewayAccessPolicy(token_ttl=-1)
        hotkey = keypair.ss58_address
        nonce = policy.issue_challenge(hotkey)
        token = policy.verify_response(hotkey, nonce, _sign(keypair, nonce))
        assert policy.validate_token(token) is None

    def test_token_cap_evicts_oldest(self, keypair):
        policy = GatewayAccessPolicy(max_tokens=2)
        hotkey = keypair.ss58_address
        tokens = []
        for _ in range(3):
            nonce = policy.issue_challenge(hotkey)
            tokens.append(policy.verify_response(hotkey, nonce, _sign(keypair, nonce)))
        assert policy.validate_token(tokens[0]) is None
        assert policy.validate_token(tokens[2]) == hotkey

    def test_rate_limit(self):
        policy = GatewayAccessPolicy(rate_limit_per_hour=3)
        assert all(policy.check_rate_limit("hk") for _ in range(3))
        assert not policy.check_rate_limit("hk")
        assert policy.check_rate_limit("other")
