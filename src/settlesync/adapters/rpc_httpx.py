from __future__ import annotations
import asyncio, httpx, logging
from typing import Any, Optional
from ..domain.decoding import decode_log
from ..domain.models import Event, FilterDescriptor
from ..domain.value_types import Address, address_key, normalize_address
from ..errors import RPCError
from ..ports.rpc import LedgerClient

logger = logging.getLogger(__name__)

BALANCE_OF_SELECTOR = "0x70a08231"   # balanceOf(address)

def _to_hex_block(n: int) -> str: return hex(int(n))

def _balance_of_calldata(address: str) -> str:
    return BALANCE_OF_SELECTOR + "0" * 24 + address_key(address)

class HttpxLedgerClient(LedgerClient):
    """
    JSON-RPC client for one ERC20/WETH-style token contract.

    `client` may be injected (tests pass an AsyncClient over httpx.MockTransport);
    otherwise an HTTP/2 client with pooled connections is created.
    """
    def __init__(
        self,
        rpc_url: str,
        token_address: str,
        *,
        timeout_s: int = 20,
        max_conn: int = 64,
        max_retries: int = 3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.token_address = normalize_address(token_address)
        self.max_retries = max_retries
        self.client = client if client is not None else httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
        )
        self._req_id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._req_id += 1
        payload = {"jsonrpc":"2.0","id":self._req_id,"method":method,"params":params}
        # retry on 429 with simple backoff
        for attempt in range(self.max_retries):
            r = await self.client.post(self.rpc_url, json=payload)
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                delay = max(1.0, float(ra)) if ra and ra.isdigit() else (1.0 * (2**attempt))
                logger.debug("%s rate limited, sleeping %.1fs", method, delay)
                await asyncio.sleep(delay); continue
            r.raise_for_status()
            data = r.json()
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise RPCError(method, str(err.get("message")), err.get("code"))
                raise RPCError(method, str(err))
            return data.get("result")
        raise RPCError(method, f"Retries exhausted after {self.max_retries} rate-limited attempts", 429)

    async def get_block_number(self) -> int:
        return int(await self._call("eth_blockNumber", []), 16)

    async def get_chain_id(self) -> int:
        return int(await self._call("eth_chainId", []), 16)

    async def query_events(self, descriptor: FilterDescriptor, from_block: int, to_block: int) -> list[Event]:
        res = await self._call("eth_getLogs", [{
            "address": self.token_address,
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
            "topics": descriptor.topics(),
        }])
        typed: list[Event] = []
        for rl in res or []:
            ev = decode_log(rl)
            if ev is None:
                logger.debug("Skipping undecodable log %s:%s", rl.get("transactionHash"), rl.get("logIndex"))
                continue
            typed.append(ev)
        return typed

    async def get_balance(self, address: Address, at_block: int) -> Optional[int]:
        res = await self._call("eth_call", [
            {"to": self.token_address, "data": _balance_of_calldata(address)},
            _to_hex_block(at_block),
        ])
        if not res or res == "0x":
            return None
        return int(res, 16)

    async def aclose(self) -> None:
        await self.client.aclose()
