from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

from eth_account import Account
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from intent_relayer.errors import ConfigurationError
from intent_relayer.orders import RawDepositEvent


def load_abi(rel_path: str):
    path = Path(__file__).resolve().parent.parent / "abi" / rel_path
    return json.loads(path.read_text())


SPOKE_POOL_ABI = load_abi("spoke_pool.json")
ERC20_ABI = load_abi("erc20.json")
HUB_POOL_ABI = load_abi("hub_pool.json")
CONFIG_STORE_ABI = load_abi("config_store.json")

DEPOSIT_EVENT = "V3FundsDeposited"
MAX_UINT256 = 2**256 - 1


def event_topic(abi: list[dict], name: str) -> str:
    entry = next(e for e in abi if e.get("type") == "event" and e.get("name") == name)
    types = ",".join(i["type"] for i in entry["inputs"])
    return Web3.to_hex(Web3.keccak(text=f"{name}({types})"))


@dataclass(frozen=True)
class LogBatch:
    from_block: int
    to_block: int
    events: list[RawDepositEvent]


@dataclass
class EvmChainClient:
    """Async JSON-RPC access to one chain, optionally able to sign."""

    w3: AsyncWeb3
    chain_id: int
    private_key: str | None
    address: str | None
    receipt_timeout: float = 180.0

    @classmethod
    def create(cls, rpc_url: str, chain_id: int, private_key: str | None, explicit_address: str | None) -> EvmChainClient:
        if not rpc_url.startswith("http"):
            raise ConfigurationError(f"Chain {chain_id}: only HTTP(S) RPC endpoints are supported, got {rpc_url}")
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        addr = explicit_address
        if private_key and not addr:
            addr = Account.from_key(private_key).address
        logger.info("Connected to EVM provider for chain id {}", chain_id)
        return cls(w3=w3, chain_id=chain_id, private_key=private_key, address=addr)

    @property
    def can_sign(self) -> bool:
        return bool(self.private_key and self.address)

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_latest_block(self):
        return await self.w3.eth.get_block("latest")

    async def get_block(self, number: int):
        return await self.w3.eth.get_block(number)

    async def deposit_events(
        self,
        address: str,
        from_block: int | None,
        interval: float,
        block_range: int,
    ) -> AsyncIterator[LogBatch]:
        """Poll SpokePool deposit logs, yielding one batch per scanned block range.

        Starts at ``from_block`` or at the current head when it is ``None``.
        Empty batches are yielded too so callers can track scan progress.
        """
        address = Web3.to_checksum_address(address)
        contract = self.w3.eth.contract(address=address, abi=SPOKE_POOL_ABI)
        event = getattr(contract.events, DEPOSIT_EVENT)()
        topic = event_topic(SPOKE_POOL_ABI, DEPOSIT_EVENT)
        next_block = from_block if from_block is not None else await self.w3.eth.block_number

        while True:
            head = await self.w3.eth.block_number
            if head < next_block:
                await asyncio.sleep(interval)
                continue
            to_block = min(head, next_block + block_range - 1)
            logs = await self.w3.eth.get_logs(
                {"address": address, "fromBlock": next_block, "toBlock": to_block, "topics": [topic]}
            )
            events = [RawDepositEvent.from_log(event.process_log(raw), self.chain_id) for raw in logs]
            yield LogBatch(from_block=next_block, to_block=to_block, events=events)
            next_block = to_block + 1
            if to_block >= head:
                await asyncio.sleep(interval)

    async def new_blocks(self, interval: float) -> AsyncIterator[Any]:
        last = None
        while True:
            block = await self.w3.eth.get_block("latest")
            if last is None or block["number"] > last:
                last = block["number"]
                yield block
            await asyncio.sleep(interval)

    async def simulate_call(self, to: str, abi: list[dict], function: str, args: list, gas_params: dict | None = None) -> dict:
        """Dry-run the call with ``eth_call`` and return the built transaction.

        Reverts surface as ``ContractLogicError`` from the ``eth_call``.
        """
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(to), abi=abi)
        fn = getattr(contract.functions, function)(*args)
        tx_params: dict = {"from": self.address}
        tx_params.update(gas_params or {})
        await fn.call(tx_params)
        return await fn.build_transaction(tx_params)

    async def submit(self, tx: dict) -> str:
        if not self.can_sign:
            raise RuntimeError(f"Chain {self.chain_id}: private key and address required for sending transactions")
        tx = dict(tx)
        tx.setdefault("chainId", self.chain_id)
        if "nonce" not in tx:
            tx["nonce"] = await self.w3.eth.get_transaction_count(self.address, "pending")
        signed = self.w3.eth.account.sign_transaction(tx, self.private_key)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str):
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)

    def erc20(self, token_addr: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_addr), abi=ERC20_ABI)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return int(await self.erc20(token).functions.allowance(owner, Web3.to_checksum_address(spender)).call())

    async def approve(self, token: str, spender: str, amount: int) -> str:
        tx = await self.simulate_call(token, ERC20_ABI, "approve", [Web3.to_checksum_address(spender), amount])
        tx_hash = await self.submit(tx)
        receipt = await self.wait_for_receipt(tx_hash)
        if receipt["status"] != 1:
            raise RuntimeError(f"Approval transaction failed: {tx_hash}")
        return tx_hash
