"""Capability interfaces for per-family client handles.

EVM handles can retarget any EVM chain in place; alternate-chain handles are
bound to one network for their lifetime. The two capability sets are kept
distinct and the dispatcher branches on protocol family.
"""

from abc import ABC, abstractmethod
from typing import Any

from .types import Amount, BalanceEntry, ProtocolFamily, TxReceipt, TxStatus


class ChainHandle(ABC):
    """Operations every client handle provides."""

    family: ProtocolFamily

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    async def get_native_balance(self, address: str | None = None) -> BalanceEntry:
        pass

    @abstractmethod
    async def get_token_balance(self, token: str, address: str | None = None) -> BalanceEntry:
        pass

    @abstractmethod
    async def transfer_native(self, to: str, amount: Amount, **options: Any) -> TxReceipt:
        pass

    @abstractmethod
    async def transfer_token(
        self, token: str, to: str, amount: Amount, **options: Any
    ) -> TxReceipt:
        pass

    @abstractmethod
    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        pass

    @abstractmethod
    async def wait_for_transaction(self, tx_hash: str, timeout: float | None = None) -> TxStatus:
        pass

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        pass

    @abstractmethod
    def sign_message(self, message: str) -> str:
        pass

    @abstractmethod
    async def aclose(self) -> None:
        pass


class ChainSwitchable(ChainHandle):
    """Handle whose active chain can be changed in place."""

    @property
    @abstractmethod
    def current_chain(self) -> str:
        pass

    @abstractmethod
    def switch_chain(self, chain: str, rpc_url: str | None = None) -> Any:
        pass


class ChainFixed(ChainHandle):
    """Handle bound to a single chain for its whole lifetime."""

    @property
    @abstractmethod
    def chain_key(self) -> str:
        pass

    @property
    @abstractmethod
    def rpc_url(self) -> str:
        pass
