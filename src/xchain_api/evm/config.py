"""Configuration containers for the EVM client handle."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CHAIN = "ETHEREUM"
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"


@dataclass(frozen=True)
class EVMClientConfig:
    """Signing material and connection settings for the EVM handle.

    Exactly one of ``private_key`` or ``mnemonic`` must be provided.
    """

    private_key: str | None = None
    mnemonic: str | None = None
    derivation_path: str | None = None
    default_chain: str = DEFAULT_CHAIN
    rpc_url: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    wait_for_receipt: bool = True
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT

    def __post_init__(self) -> None:
        if bool(self.private_key) == bool(self.mnemonic):
            raise ValueError("Provide exactly one of private_key or mnemonic")

    @classmethod
    def from_secret(cls, secret: str, **kwargs) -> EVMClientConfig:
        """Build a config from a secret that is either a hex key or a mnemonic phrase."""

        if " " in secret.strip():
            return cls(mnemonic=secret.strip(), **kwargs)
        return cls(private_key=secret.strip(), **kwargs)
