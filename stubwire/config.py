"""Client configuration."""

from dataclasses import dataclass
from pathlib import Path

from dataclasses_json import DataClassJsonMixin

from .proto.crc import crc_size
from .proto.dispatch import RetryPolicy
from .proto.principal import Principal


@dataclass
class ClientConfig(DataClassJsonMixin):
    """Settings for a client.

    ``identity`` is the caller's principal in textual form; calls are sent
    as the anonymous principal by default. Retries are off unless
    ``max_attempts`` is raised, and update calls are only retried with
    ``retry_updates`` set.
    """

    identity: str = "2vxsx-fae"
    timeout: float = 30.0
    max_attempts: int = 1
    backoff: float = 0.1
    retry_updates: bool = False
    query_cache: bool = False
    crc: str = "CRC8"

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        self.principal()
        self.retry_policy()
        crc_size(self.crc)
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def principal(self) -> Principal:
        return Principal.from_text(self.identity)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            retry_updates=self.retry_updates,
        )


def load_config(path: str | Path) -> ClientConfig:
    """Load and validate a JSON configuration file."""
    config = ClientConfig.from_json(Path(path).read_text(encoding="utf-8"))
    config.validate()
    return config
