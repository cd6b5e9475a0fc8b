"""Top-level configuration for the multi-chain client."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from dotenv import dotenv_values

from .alt.config import DEFAULT_ALT_CHAIN, AltClientConfig
from .evm.config import (
    DEFAULT_CHAIN,
    DEFAULT_RECEIPT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    EVMClientConfig,
)
from .registry import DEFAULT_CHAINS, env_var_for, normalise_key
from .retry import DEFAULT_BACKOFF, DEFAULT_MAX_ATTEMPTS, RetryPolicy
from .types import Commitment

DEFAULT_BATCH_CONCURRENCY = 5

SOLANA_NETWORK_CHAINS = {
    "mainnet": "SOLANA",
    "mainnet-beta": "SOLANA",
    "devnet": "SOLANA_DEVNET",
    "testnet": "SOLANA_TESTNET",
}


@dataclass(frozen=True)
class ClientConfig:
    """Signing material per protocol family plus shared dispatch settings.

    Either sub-config may be ``None``; operations that need the missing
    family fail with ``BackendNotConfigured``.
    """

    evm: EVMClientConfig | None = None
    alt: AltClientConfig | None = None
    rpc_urls: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    max_retries: int = DEFAULT_MAX_ATTEMPTS
    retry_backoff: float = DEFAULT_BACKOFF
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY

    def __post_init__(self) -> None:
        if self.batch_concurrency < 1:
            raise ValueError("batch_concurrency must be at least 1")
        urls = {normalise_key(key): url for key, url in self.rpc_urls.items() if url}
        object.__setattr__(self, "rpc_urls", MappingProxyType(urls))

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_retries, backoff=self.retry_backoff)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        env_file: str | os.PathLike[str] | None = None,
    ) -> ClientConfig:
        """Build a config from environment variables.

        Values in ``env_file`` fill in anything the environment does not set,
        matching ``load_dotenv`` without ``override``.
        """

        env: Mapping[str, str] = os.environ if environ is None else environ
        if env_file is not None:
            defaults = {key: value for key, value in dotenv_values(env_file).items() if value is not None}
            env = {**defaults, **env}
        request_timeout = _float(env, "REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)

        evm: EVMClientConfig | None = None
        private_key = env.get("EVM_PRIVATE_KEY")
        mnemonic = env.get("EVM_MNEMONIC")
        if private_key or mnemonic:
            evm = EVMClientConfig(
                private_key=private_key or None,
                mnemonic=None if private_key else mnemonic,
                derivation_path=env.get("EVM_DERIVATION_PATH") or None,
                default_chain=env.get("DEFAULT_CHAIN", DEFAULT_CHAIN),
                request_timeout=request_timeout,
                receipt_timeout=_float(env, "RECEIPT_TIMEOUT", DEFAULT_RECEIPT_TIMEOUT),
            )

        alt: AltClientConfig | None = None
        secret = env.get("SOLANA_PRIVATE_KEY")
        if secret:
            alt = AltClientConfig(
                secret_key=secret,
                chain=_solana_chain(env),
                commitment=Commitment(env.get("SOLANA_COMMITMENT", Commitment.CONFIRMED.value)),
                request_timeout=request_timeout,
            )

        rpc_urls = {}
        for descriptor in DEFAULT_CHAINS:
            url = env.get(env_var_for(descriptor.key))
            if url:
                rpc_urls[descriptor.key] = url

        return cls(
            evm=evm,
            alt=alt,
            rpc_urls=rpc_urls,
            max_retries=_int(env, "MAX_RETRIES", DEFAULT_MAX_ATTEMPTS),
            retry_backoff=_float(env, "RETRY_BACKOFF", DEFAULT_BACKOFF),
            batch_concurrency=_int(env, "BATCH_CONCURRENCY", DEFAULT_BATCH_CONCURRENCY),
        )

    def merged(self, **changes: Any) -> ClientConfig:
        """Return a copy with every given change applied.

        Only keywords actually passed are changed, so ``evm=None`` or
        ``alt=None`` unconfigures that family. ``rpc_urls`` are merged key by
        key rather than replaced; ``rpc_urls=None`` clears the overrides.
        """

        updates = dict(changes)
        if "rpc_urls" in updates:
            overrides = updates["rpc_urls"]
            updates["rpc_urls"] = {} if overrides is None else {**self.rpc_urls, **overrides}
        return replace(self, **updates)


def _solana_chain(env: Mapping[str, str]) -> str:
    chain = env.get("SOLANA_CHAIN")
    if chain:
        return normalise_key(chain)
    network = env.get("SOLANA_NETWORK", "").strip().lower()
    if not network:
        return DEFAULT_ALT_CHAIN
    if network not in SOLANA_NETWORK_CHAINS:
        raise ValueError(f"Unsupported SOLANA_NETWORK: {network}")
    return SOLANA_NETWORK_CHAINS[network]


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
