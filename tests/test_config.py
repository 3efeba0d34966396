"""Tests for settings loading from args and environment."""

import argparse

import pytest
from pydantic import ValidationError

from cipherfeed.config import FeedSettings, add_args, load_settings


def _parser():
    parser = argparse.ArgumentParser()
    add_args(parser)
    return parser


class TestLoadSettings:

    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings.confirmation_timeout == 120.0
        assert settings.proof_timeout == 300.0
        assert settings.success_notice_seconds == 2.0
        assert settings.notice_seconds == 3.0
        assert settings.history_limit == 10

    def test_env_overrides(self):
        settings = load_settings(environ={
            "CIPHERFEED_CONTRACT__ADDRESS": "0xfeed",
            "CIPHERFEED_GATEWAY__PORT": "9001",
            "CIPHERFEED_HISTORY__LIMIT": "4",
        })
        assert settings.target_address == "0xfeed"
        assert settings.port == 9001
        assert settings.history_limit == 4

    @pytest.mark.parametrize("raw", ["none", "0", ""])
    def test_timeout_can_be_disabled(self, raw):
        settings = load_settings(environ={"CIPHERFEED_TX__CONFIRMATION_TIMEOUT": raw})
        assert settings.confirmation_timeout is None

    def test_args_then_env(self):
        args = _parser().parse_args(["--feed.port", "9100", "--feed.proof_timeout", "12"])
        settings = load_settings(args, environ={"CIPHERFEED_GATEWAY__PORT": "9200"})
        assert settings.port == 9200
        assert settings.proof_timeout == 12.0

    def test_invalid_value_rejected(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"CIPHERFEED_HISTORY__LIMIT": "0"})

    def test_model_defaults_match_parser(self):
        args = _parser().parse_args([])
        assert load_settings(args, environ={}) == FeedSettings()

    def test_zero_timeout_args_disable_waits(self):
        args = _parser().parse_args(["--feed.confirmation_timeout", "0", "--feed.proof_timeout", "0"])
        settings = load_settings(args, environ={})
        assert settings.confirmation_timeout is None
        assert settings.proof_timeout is None


class TestAttestationKey:

    def test_unset_means_random_key(self):
        assert load_settings(environ={}).attestation_key_bytes() is None

    def test_env_key(self):
        settings = load_settings(environ={"CIPHERFEED_GATEWAY__ATTESTATION_KEY": "0x" + "ab" * 32})
        assert settings.attestation_key == "ab" * 32
        assert settings.attestation_key_bytes() == bytes.fromhex("ab" * 32)

    def test_arg_key(self):
        args = _parser().parse_args(["--feed.attestation_key", "0102"])
        assert load_settings(args, environ={}).attestation_key_bytes() == b"\x01\x02"

    def test_non_hex_key_rejected(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"CIPHERFEED_GATEWAY__ATTESTATION_KEY": "not-hex"})
