"""Static chain registry mapping logical chain keys to descriptors."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import replace
from types import MappingProxyType
from typing import Any

from .constants import SOLANA_CLUSTERS
from .exceptions import UnknownChain
from .types import ChainDescriptor, NativeCurrency, ProtocolFamily

logger = logging.getLogger(__name__)

_ETH = NativeCurrency(name="Ether", symbol="ETH", decimals=18)
_SOL = NativeCurrency(name="Solana", symbol="SOL", decimals=9)


def _evm(
    key: str,
    chain_id: int,
    name: str,
    rpc_url: str,
    explorer_url: str,
    currency: NativeCurrency = _ETH,
) -> ChainDescriptor:
    return ChainDescriptor(
        key=key,
        name=name,
        family=ProtocolFamily.EVM,
        rpc_url=rpc_url,
        explorer_url=explorer_url,
        native_currency=currency,
        chain_id=chain_id,
    )


def _alt(key: str, network: str, name: str, rpc_url: str) -> ChainDescriptor:
    return ChainDescriptor(
        key=key,
        name=name,
        family=ProtocolFamily.ALT,
        rpc_url=rpc_url,
        explorer_url="https://explorer.solana.com",
        native_currency=_SOL,
        network=network,
    )


DEFAULT_CHAINS: tuple[ChainDescriptor, ...] = (
    _evm("ETHEREUM", 1, "Ethereum", "https://eth.llamarpc.com", "https://etherscan.io"),
    _evm("OPTIMISM", 10, "Optimism", "https://mainnet.optimism.io", "https://optimistic.etherscan.io"),
    _evm("ARBITRUM", 42161, "Arbitrum One", "https://arb1.arbitrum.io/rpc", "https://arbiscan.io"),
    _evm("BASE", 8453, "Base", "https://mainnet.base.org", "https://basescan.org"),
    _evm(
        "POLYGON",
        137,
        "Polygon POS",
        "https://polygon-rpc.com",
        "https://polygonscan.com",
        NativeCurrency(name="MATIC", symbol="MATIC", decimals=18),
    ),
    _evm(
        "POLYGON_ZKEVM",
        1101,
        "Polygon zkEVM",
        "https://zkevm-rpc.com",
        "https://zkevm.polygonscan.com",
    ),
    _evm("ZKSYNC", 324, "zkSync Era", "https://mainnet.era.zksync.io", "https://explorer.zksync.io"),
    _evm("LINEA", 59144, "Linea", "https://rpc.linea.build", "https://lineascan.build"),
    _evm("SCROLL", 534352, "Scroll", "https://rpc.scroll.io", "https://scrollscan.com"),
    _evm(
        "MANTLE",
        5000,
        "Mantle",
        "https://rpc.mantle.xyz",
        "https://mantlescan.info",
        NativeCurrency(name="Mantle", symbol="MNT", decimals=18),
    ),
    _evm(
        "METIS",
        1088,
        "Metis",
        "https://andromeda.metis.io/?owner=1088",
        "https://andromeda-explorer.metis.io",
        NativeCurrency(name="Metis", symbol="METIS", decimals=18),
    ),
    _evm("BLAST", 81457, "Blast", "https://rpc.blast.io", "https://blastscan.io"),
    _evm(
        "BSC",
        56,
        "BNB Smart Chain",
        "https://bsc-dataseed.binance.org",
        "https://bscscan.com",
        NativeCurrency(name="BNB", symbol="BNB", decimals=18),
    ),
    _evm(
        "AVALANCHE",
        43114,
        "Avalanche C-Chain",
        "https://api.avax.network/ext/bc/C/rpc",
        "https://snowtrace.io",
        NativeCurrency(name="Avalanche", symbol="AVAX", decimals=18),
    ),
    _evm(
        "FANTOM",
        250,
        "Fantom Opera",
        "https://rpc.ftm.tools",
        "https://ftmscan.com",
        NativeCurrency(name="Fantom", symbol="FTM", decimals=18),
    ),
    _evm(
        "GNOSIS",
        100,
        "Gnosis",
        "https://rpc.gnosischain.com",
        "https://gnosisscan.io",
        NativeCurrency(name="xDAI", symbol="XDAI", decimals=18),
    ),
    _alt("SOLANA", "mainnet", "Solana", "https://api.mainnet-beta.solana.com"),
    _alt("SOLANA_DEVNET", "devnet", "Solana Devnet", "https://api.devnet.solana.com"),
    _alt("SOLANA_TESTNET", "testnet", "Solana Testnet", "https://api.testnet.solana.com"),
)

PUBLIC_RPC_DEFAULTS: Mapping[str, str] = MappingProxyType(
    {descriptor.key: descriptor.rpc_url for descriptor in DEFAULT_CHAINS}
)


def normalise_key(chain: str) -> str:
    return chain.strip().upper()


def env_var_for(chain: str) -> str:
    """Return the environment variable consulted for a chain's RPC endpoint."""

    return f"{normalise_key(chain)}_RPC_URL"


class ChainRegistry:
    """Immutable lookup table of chain descriptors.

    Lookups are dictionary reads with no side effects, so a single registry
    can be shared between concurrent tasks without locking.
    """

    def __init__(self, descriptors: Iterable[ChainDescriptor] = DEFAULT_CHAINS) -> None:
        chains: dict[str, ChainDescriptor] = {}
        by_chain_id: dict[int, ChainDescriptor] = {}

        for descriptor in descriptors:
            key = normalise_key(descriptor.key)
            if key in chains:
                raise ValueError(f"Duplicate chain key: {key}")
            if key != descriptor.key:
                descriptor = replace(descriptor, key=key)

            if descriptor.family is ProtocolFamily.EVM:
                if descriptor.chain_id is None:
                    raise ValueError(f"EVM chain {key} requires a numeric chain id")
                if descriptor.chain_id in by_chain_id:
                    raise ValueError(
                        f"Chain id {descriptor.chain_id} registered twice "
                        f"({by_chain_id[descriptor.chain_id].key}, {key})"
                    )
                by_chain_id[descriptor.chain_id] = descriptor

            chains[key] = descriptor

        self._chains: Mapping[str, ChainDescriptor] = MappingProxyType(chains)
        self._by_chain_id: Mapping[int, ChainDescriptor] = MappingProxyType(by_chain_id)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_env(
        cls,
        descriptors: Iterable[ChainDescriptor] = DEFAULT_CHAINS,
        environ: Mapping[str, str] | None = None,
    ) -> ChainRegistry:
        """Build a registry whose endpoints honour ``<KEY>_RPC_URL`` variables."""

        env = os.environ if environ is None else environ
        resolved = []
        for descriptor in descriptors:
            override = env.get(env_var_for(descriptor.key))
            if override:
                logger.debug("Using %s for %s", env_var_for(descriptor.key), descriptor.key)
                descriptor = replace(descriptor, rpc_url=override)
            resolved.append(descriptor)
        return cls(resolved)

    def with_overrides(self, rpc_urls: Mapping[str, str]) -> ChainRegistry:
        """Return a new registry with endpoint overrides applied."""

        overrides = {normalise_key(key): url for key, url in rpc_urls.items() if url}
        for key in overrides:
            self.resolve(key)

        return ChainRegistry(
            replace(descriptor, rpc_url=overrides[key]) if key in overrides else descriptor
            for key, descriptor in self._chains.items()
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def resolve(self, chain: str) -> ChainDescriptor:
        descriptor = self._chains.get(normalise_key(chain))
        if descriptor is None:
            raise UnknownChain(chain)
        return descriptor

    def is_valid(self, chain: str) -> bool:
        return normalise_key(chain) in self._chains

    def by_chain_id(self, chain_id: int) -> ChainDescriptor:
        descriptor = self._by_chain_id.get(chain_id)
        if descriptor is None:
            raise UnknownChain(str(chain_id), details={"chain_id": chain_id})
        return descriptor

    def endpoint_for(self, chain: str, override: str | None = None) -> str:
        """Resolve the RPC endpoint for ``chain``.

        Order: explicit override, descriptor default, ``<KEY>_RPC_URL`` for
        EVM chains, then the hard-coded public endpoint.
        """

        descriptor = self.resolve(chain)
        if override:
            return override
        if descriptor.rpc_url:
            return descriptor.rpc_url
        if descriptor.family is ProtocolFamily.EVM:
            env_url = os.environ.get(env_var_for(descriptor.key))
            if env_url:
                return env_url
        fallback = PUBLIC_RPC_DEFAULTS.get(descriptor.key)
        if not fallback:
            raise UnknownChain(chain, details={"reason": "no RPC endpoint available"})
        return fallback

    def evm_chains(self) -> list[ChainDescriptor]:
        return [d for d in self._chains.values() if d.family is ProtocolFamily.EVM]

    def alt_chains(self) -> list[ChainDescriptor]:
        return [d for d in self._chains.values() if d.family is ProtocolFamily.ALT]

    def keys(self) -> list[str]:
        return list(self._chains)

    def __contains__(self, chain: object) -> bool:
        return isinstance(chain, str) and self.is_valid(chain)

    def __iter__(self):
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------
    def explorer_tx_url(self, chain: str, tx_hash: str) -> str:
        descriptor = self.resolve(chain)
        return _explorer_url(descriptor, "tx", tx_hash)

    def explorer_address_url(self, chain: str, address: str) -> str:
        descriptor = self.resolve(chain)
        return _explorer_url(descriptor, "address", address)

    def network_info(self, chain: str) -> dict[str, Any]:
        descriptor = self.resolve(chain)
        return {
            "chain": descriptor.key,
            "chain_id": descriptor.chain_id,
            "network": descriptor.network,
            "name": descriptor.name,
            "family": descriptor.family.value,
            "rpc_url": self.endpoint_for(descriptor.key),
            "explorer": descriptor.explorer_url,
            "native_currency": {
                "name": descriptor.native_currency.name,
                "symbol": descriptor.native_currency.symbol,
                "decimals": descriptor.native_currency.decimals,
            },
        }


def _explorer_url(descriptor: ChainDescriptor, kind: str, identifier: str) -> str:
    base = descriptor.explorer_url.rstrip("/")
    url = f"{base}/{kind}/{identifier}"
    if descriptor.family is ProtocolFamily.ALT and descriptor.network not in (None, "mainnet"):
        cluster = SOLANA_CLUSTERS.get(descriptor.network or "", descriptor.network)
        url = f"{url}?cluster={cluster}"
    return url
