"""
Ethereum RPC Data Source
Reads ETHDeposited logs from the deposit contract over JSON-RPC
"""
import asyncio
from typing import Any, Dict, List, Optional

import httpx
from eth_utils import keccak, to_checksum_address
from loguru import logger

from errors import DecodeError, TransientIOError
from interfaces import DepositHandler
from models import DecodedDeposit

DEPOSIT_EVENT_SIGNATURE = "ETHDeposited(address,uint256,uint256)"
DEPOSIT_EVENT_TOPIC = "0x" + keccak(text=DEPOSIT_EVENT_SIGNATURE).hex()


def _hex_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


def decode_deposit_log(log: Dict[str, Any]) -> DecodedDeposit:
    """
    Decode one eth_getLogs entry.

    topics[1] carries the indexed user address; data holds the two
    uint256 words (amount, krwwMinted).
    """
    try:
        topics = log["topics"]
        if len(topics) < 2 or topics[0].lower() != DEPOSIT_EVENT_TOPIC:
            raise DecodeError(f"not an {DEPOSIT_EVENT_SIGNATURE} log")
        user = to_checksum_address("0x" + topics[1][-40:])
        data = log["data"][2:] if log["data"].startswith("0x") else log["data"]
        if len(data) < 128:
            raise DecodeError(f"log data too short ({len(data) // 2} bytes)")
        return DecodedDeposit(
            user=user,
            amount_wei=int(data[0:64], 16),
            krww_minted_wei=int(data[64:128], 16),
            block_number=_hex_int(log["blockNumber"]),
            transaction_hash=log["transactionHash"],
            log_index=_hex_int(log.get("logIndex", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"malformed deposit log: {e}") from e


class EthereumRPCClient:
    """
    JSON-RPC chain client.

    subscribe() is a polling loop from the current head; historical ranges
    go through query_logs(). Both decode with decode_deposit_log().
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        poll_interval_sec: float = 4.0,
        session: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.poll_interval_sec = poll_interval_sec
        self.session = session
        self._request_id = 0
        self._poll_task: Optional[asyncio.Task] = None

    async def _rpc_call(self, method: str, params: Optional[list] = None) -> Any:
        """Make a JSON-RPC call and return its result."""
        if self.session is None:
            raise TransientIOError("Ethereum RPC client is not connected")
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method,
                   "params": params or []}
        try:
            resp = await self.session.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientIOError(f"RPC {method} failed: {e}") from e
        if body.get("error"):
            raise TransientIOError(f"RPC {method} error: {body['error']}")
        return body.get("result")

    async def connect(self) -> None:
        if self.session is None:
            self.session = httpx.AsyncClient(timeout=30.0, headers={"Content-Type": "application/json"})
        head = await self.current_block_height()
        logger.info(f"✓ Connected to Ethereum RPC (block: {head})")

    async def disconnect(self) -> None:
        await self.unsubscribe()
        if self.session:
            await self.session.aclose()
            self.session = None
            logger.info("Disconnected from Ethereum RPC")

    async def current_block_height(self) -> int:
        return _hex_int(await self._rpc_call("eth_blockNumber"))

    async def query_logs(self, from_block: int, to_block: int) -> List[DecodedDeposit]:
        logs = await self._rpc_call("eth_getLogs", [{
            "address": self.contract_address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [DEPOSIT_EVENT_TOPIC],
        }]) or []
        events = []
        for log in logs:
            try:
                events.append(decode_deposit_log(log))
            except DecodeError as e:
                logger.warning(f"Skipping undecodable log {log.get('transactionHash')}: {e}")
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    # ── Subscription ─────────────────────────────────────────────────────

    async def subscribe(self, handler: DepositHandler) -> None:
        if self._poll_task is not None:
            logger.warning("Already subscribed to deposit events")
            return
        next_block = await self.current_block_height() + 1
        self._poll_task = asyncio.create_task(
            self._poll(handler, next_block), name="eth-deposit-poll")
        logger.info(f"Subscribed to {DEPOSIT_EVENT_SIGNATURE} from block {next_block}")

    async def unsubscribe(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Unsubscribed from deposit events")

    async def _poll(self, handler: DepositHandler, next_block: int) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_sec)
            try:
                head = await self.current_block_height()
                if head < next_block:
                    continue
                for event in await self.query_logs(next_block, head):
                    await handler(event)
                next_block = head + 1
            except TransientIOError as e:
                logger.warning(f"Deposit poll failed, retrying: {e}")
            except Exception:
                logger.exception("Unexpected error in deposit poll, retrying")
