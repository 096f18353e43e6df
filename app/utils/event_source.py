# app/utils/event_source.py
"""
Vault event source backed by a JSON-RPC node through web3's AsyncWeb3.

One instance per VaultConfig; nothing here is shared between vaults.
"""
import asyncio
import logging
from typing import Any, Dict, List, Mapping, Protocol

from web3 import AsyncWeb3, Web3
from web3.providers.rpc import AsyncHTTPProvider

from app.core.config import VaultConfig, settings
from app.core.errors import ExternalFetchFailure

logger = logging.getLogger(__name__)

EVENT_SIGNATURES = {
    "Deposited": "Deposited(address,uint256,uint256,uint256,uint256)",
    "Withdrawn": "Withdrawn(address,uint256,uint256,uint256,uint256)",
    "YieldDistributed": "YieldDistributed(uint256,uint256)",
}

VAULT_EVENTS_ABI = [
    {
        "anonymous": False,
        "name": "Deposited",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": True, "name": "depositId", "type": "uint256"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "shares", "type": "uint256"},
            {"indexed": False, "name": "lockTier", "type": "uint256"},
        ],
    },
    {
        "anonymous": False,
        "name": "Withdrawn",
        "type": "event",
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": True, "name": "depositId", "type": "uint256"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "yield", "type": "uint256"},
            {"indexed": False, "name": "sharesBurned", "type": "uint256"},
        ],
    },
    {
        "anonymous": False,
        "name": "YieldDistributed",
        "type": "event",
        "inputs": [
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "newInterestIndex", "type": "uint256"},
        ],
    },
]


class VaultEventSource(Protocol):
    """What the scanner needs from the chain."""

    async def get_block_number(self) -> int:
        ...

    async def fetch_events(self, kind: str, from_block: int, to_block: int) -> List[Mapping[str, Any]]:
        ...


class Web3VaultEventSource:
    def __init__(self, vault: VaultConfig, timeout: float = None):
        self.vault = vault
        self.timeout = timeout if timeout is not None else settings.RPC_TIMEOUT_SECONDS
        self.w3 = AsyncWeb3(AsyncHTTPProvider(vault.rpc_url, request_kwargs={"timeout": self.timeout}))
        self.address = Web3.to_checksum_address(vault.vault_address)
        self.contract = self.w3.eth.contract(address=self.address, abi=VAULT_EVENTS_ABI)
        # keccak of the full event signature string is topic0
        self.topics: Dict[str, str] = {
            kind: Web3.to_hex(Web3.keccak(text=signature))
            for kind, signature in EVENT_SIGNATURES.items()
        }

    async def _call(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExternalFetchFailure(f"{self.vault.key}: {what} timed out after {self.timeout}s") from e
        except ExternalFetchFailure:
            raise
        except Exception as e:
            raise ExternalFetchFailure(f"{self.vault.key}: {what} failed: {e}") from e

    async def get_block_number(self) -> int:
        return int(await self._call(self.w3.eth.block_number, "eth_blockNumber"))

    async def fetch_events(self, kind: str, from_block: int, to_block: int) -> List[Mapping[str, Any]]:
        if kind not in self.topics:
            raise ValueError(f"Unknown vault event kind: {kind}")
        logs = await self._call(
            self.w3.eth.get_logs({
                "address": self.address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [self.topics[kind]],
            }),
            f"eth_getLogs {kind} [{from_block}, {to_block}]",
        )
        event = getattr(self.contract.events, kind)()
        decoded = []
        for log in logs:
            try:
                decoded.append(event.process_log(log))
            except Exception as e:
                raise ExternalFetchFailure(
                    f"{self.vault.key}: could not decode {kind} log at block {log.get('blockNumber')}: {e}"
                ) from e
        logger.debug(f"{self.vault.key}: {len(decoded)} {kind} events in [{from_block}, {to_block}]")
        return decoded
