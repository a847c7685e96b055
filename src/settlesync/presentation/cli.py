import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import typer
from rich.table import Table

from ..adapters.memory_kv import InMemoryKeyValueStore
from ..adapters.progress_rich import RichSyncProgress
from ..adapters.redis_kv import RedisKeyValueStore
from ..adapters.rpc_httpx import HttpxLedgerClient
from ..application.range_query import RangeQueryEngine
from ..application.state_store import StateStore
from ..application.sync_loop import SyncLoop
from ..config import (
    DEFAULT_CHUNK_SIZE, DEFAULT_FILTER_CAPACITY, DEFAULT_MAX_SPLIT_DEPTH,
    DEFAULT_MIN_SPLIT_SPAN, DEFAULT_POLL_INTERVAL_S, Settings,
)
from ..domain.amounts import is_unlimited
from ..domain.value_types import Amount
from ..errors import ChainIdMismatchError, ConfigError
from ..log import console, setup_logging
from ..ports.storage import KeyValueStore

app = typer.Typer(help="settlesync: index token approvals and balances for a settlement contract.")
logger = logging.getLogger(__name__)

@app.callback()
def main(
    ctx: typer.Context,
    rpc_url: str = typer.Option("", envvar="ETH_RPC_URL", help="RPC endpoint URL"),
    network_id: int = typer.Option(1, envvar="NETWORK_ID", help="Expected chain id"),
    token: str = typer.Option("", envvar="TOKEN_CONTRACT_ADDR", help="Token contract address"),
    settlement: str = typer.Option("", envvar="SETTLEMENT_CONTRACT_ADDR", help="Settlement contract address"),
    deploy_block: int = typer.Option(0, envvar="SETTLEMENT_CONTRACT_DEPLOY_BLOCK",
                                     help="Settlement contract deploy block; nothing below is synced"),
    redis_host: str = typer.Option("localhost", envvar="REDIS_HOST"),
    redis_port: int = typer.Option(6379, envvar="REDIS_PORT"),
    redis_db: int = typer.Option(0, envvar="REDIS_DB"),
    chunk_size: int = typer.Option(DEFAULT_CHUNK_SIZE, envvar="SYNC_CHUNK_SIZE", help="Blocks per chunk"),
    poll_interval: float = typer.Option(DEFAULT_POLL_INTERVAL_S, envvar="SYNC_POLL_INTERVAL",
                                        help="Seconds between polls"),
    filter_capacity: int = typer.Option(DEFAULT_FILTER_CAPACITY, envvar="SYNC_FILTER_CAPACITY",
                                        help="Max addresses per log filter"),
    min_split_span: int = typer.Option(DEFAULT_MIN_SPLIT_SPAN, help="Smallest range width that is still bisected"),
    max_split_depth: int = typer.Option(DEFAULT_MAX_SPLIT_DEPTH, help="Max bisection depth per query"),
    log_level: str = typer.Option("INFO", envvar="LOG_LEVEL"),
):
    setup_logging(log_level)
    # validated lazily so `--help` works without a full environment
    ctx.obj = dict(
        rpc_url=rpc_url, network_id=network_id,
        token_address=token, settlement_address=settlement,
        settlement_deploy_block=deploy_block,
        redis_host=redis_host, redis_port=redis_port, redis_db=redis_db,
        chunk_size=chunk_size, poll_interval_s=poll_interval,
        filter_capacity=filter_capacity,
        min_split_span=min_split_span, max_split_depth=max_split_depth,
    )


def _settings(ctx: typer.Context) -> Settings:
    try:
        return Settings(**ctx.obj)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        raise typer.Exit(code=1)


def _format_amount(value: Optional[Amount]) -> str:
    if value is None:
        return "-"
    return "unlimited" if is_unlimited(value) else f"{value:,}"


@asynccontextmanager
async def _open(settings: Settings, memory_store: bool, progress: bool) -> AsyncIterator[SyncLoop]:
    kv: KeyValueStore = InMemoryKeyValueStore() if memory_store else RedisKeyValueStore.from_settings(settings)
    ledger = HttpxLedgerClient(settings.rpc_url, settings.token_address)
    try:
        yield SyncLoop(
            ledger=ledger,
            store=StateStore(kv, settings.namespace),
            engine=RangeQueryEngine(ledger, min_split_span=settings.min_split_span,
                                    max_split_depth=settings.max_split_depth),
            settlement_address=settings.settlement_address,
            network_id=settings.network_id,
            deploy_block=settings.settlement_deploy_block,
            chunk_size=settings.chunk_size,
            filter_capacity=settings.filter_capacity,
            poll_interval_s=settings.poll_interval_s,
            progress=RichSyncProgress(console) if progress else None,
        )
    finally:
        await ledger.aclose()
        await kv.aclose()


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ChainIdMismatchError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        logger.info("Interrupted")


@app.command()
def run(
    ctx: typer.Context,
    memory_store: bool = typer.Option(False, "--memory-store", help="Keep state in memory instead of Redis (dry run)"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show a progress bar while syncing"),
):
    """Sync forever: poll for new blocks and fold them into the store."""
    settings = _settings(ctx)

    async def go():
        async with _open(settings, memory_store, progress) as loop:
            await loop.init()
            await loop.run_forever()

    _run(go())


@app.command("sync-once")
def sync_once(
    ctx: typer.Context,
    memory_store: bool = typer.Option(False, "--memory-store", help="Keep state in memory instead of Redis (dry run)"),
):
    """Run a single sync cycle and print what it did."""
    settings = _settings(ctx)

    async def go():
        async with _open(settings, memory_store, progress=True) as loop:
            await loop.init()
            res = await loop.run_cycle()
        if res is None:
            console.print("[bold]up to date[/]: nothing new to sync")
            return
        console.print(
            f"[bold]synced[/] {res.range.start:,}-{res.range.end:,} (head {res.head:,}): "
            f"chunks={res.chunks}  approvals={res.approvals}  "
            f"active={res.active}  balances_refreshed={res.balances_refreshed}"
        )

    _run(go())


@app.command()
def show(ctx: typer.Context, address: Optional[str] = typer.Argument(None, help="Owner address to look up")):
    """Print the stored checkpoint, approver count and, optionally, one owner's record."""
    settings = _settings(ctx)

    async def go():
        kv = RedisKeyValueStore.from_settings(settings)
        try:
            store = StateStore(kv, settings.namespace)
            checkpoint = await store.get_checkpoint()
            count = await store.approver_count()
            console.print(f"[bold]{settings.namespace}[/]: synced to block {checkpoint:,}, {count:,} approvers")
            if address is None:
                return
            try:
                rec = await store.get_record(address)
            except ValueError as e:
                raise typer.BadParameter(str(e))
            table = Table("field", "value", "block", title=rec.address)
            table.add_row("approval", _format_amount(rec.approval.value), str(rec.approval.block))
            table.add_row("balance", _format_amount(rec.balance.value), str(rec.balance.block))
            console.print(table)
        finally:
            await kv.aclose()

    _run(go())


if __name__ == "__main__":
    app()
