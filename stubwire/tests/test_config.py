"""Tests for client configuration."""

import json

import pytest

from stubwire.config import ClientConfig, load_config
from stubwire.proto.dispatch import RetryPolicy
from stubwire.proto.principal import Principal


def describe_client_config():
    def defaults_to_anonymous_single_attempt(expect):
        config = ClientConfig()
        config.validate()
        expect(config.principal()) == Principal.anonymous()
        expect(config.retry_policy()) == RetryPolicy(max_attempts=1, backoff=0.1)
        expect(config.query_cache) == False

    def builds_retry_policy(expect):
        config = ClientConfig(max_attempts=4, backoff=0.5, retry_updates=True)
        expect(config.retry_policy()) == RetryPolicy(4, 0.5, True)

    def round_trips_through_json(expect):
        config = ClientConfig(identity="aaaaa-aa", timeout=2.5, crc="CRC16")
        expect(ClientConfig.from_json(config.to_json())) == config

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"identity": "not-a-principal"},
            {"timeout": 0},
            {"max_attempts": 0},
            {"backoff": -1},
            {"crc": "CRC64"},
        ],
    )
    def rejects_invalid_settings(kwargs):
        with pytest.raises(ValueError):
            ClientConfig(**kwargs).validate()


def describe_load_config():
    def reads_json_files(expect, tmp_path):
        path = tmp_path / "client.json"
        path.write_text(json.dumps({"identity": "aaaaa-aa", "max_attempts": 3}))
        config = load_config(path)
        expect(config.principal()) == Principal.management()
        expect(config.max_attempts) == 3
        expect(config.timeout) == 30.0

    def validates_what_it_reads(tmp_path):
        path = tmp_path / "client.json"
        path.write_text(json.dumps({"timeout": -1}))
        with pytest.raises(ValueError):
            load_config(str(path))
