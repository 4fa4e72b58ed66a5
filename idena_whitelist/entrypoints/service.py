"""Whitelist service entrypoint.

Single process: ingestion scheduler as a background task plus the HTTP
query surface, sharing one identity store.
"""

import argparse
import asyncio
import os
import signal
import sys

import bittensor as bt
from dotenv import load_dotenv
from pydantic import ValidationError

from idena_whitelist.base.config import WhitelistConfig, add_args, load_config


async def serve(config: WhitelistConfig, shutdown: asyncio.Event) -> None:
    """Run the scheduler and HTTP server until shutdown is set."""
    from idena_whitelist.api import WhitelistHTTPServer
    from idena_whitelist.ingestion import IngestionScheduler
    from idena_whitelist.query import WhitelistQuery
    from idena_whitelist.rpc import IdentityRPCClient
    from idena_whitelist.store import IdentityStore

    store = await IdentityStore.open(config.db_path)
    if not await store.ping():
        bt.logging.error({"whitelist_startup": {"step": "database_ping_failed", "db_path": config.db_path}})
    client = IdentityRPCClient(
        rpc_url=config.rpc_url,
        api_key=config.rpc_key,
        timeout=config.remote_timeout,
    )
    scheduler = IngestionScheduler(source=client, store=store, config=config)
    await scheduler.initialize()

    query = WhitelistQuery(
        reader=store,
        watermark=lambda: scheduler.watermark,
        min_stake=config.min_stake_threshold,
    )
    server = WhitelistHTTPServer(query=query, store=store, host=config.http_host, port=config.http_port)

    await server.start()
    ingest_task = asyncio.create_task(scheduler.run())
    try:
        await shutdown.wait()
    finally:
        scheduler.stop()
        try:
            await ingest_task
        except asyncio.CancelledError:
            pass
        await server.stop()
        await client.close()
        await store.close()


def main() -> None:
    # Load .env if not in test mode
    if os.environ.get("IDENA_WHITELIST_TEST_MODE") != "true":
        load_dotenv()

    parser = argparse.ArgumentParser(description="Idena identity whitelist service")
    bt.logging.add_args(parser)
    add_args(parser)
    args = parser.parse_args()

    try:
        config = load_config(args)
    except ValidationError as e:
        bt.logging.error({"whitelist_config_error": str(e)})
        sys.exit(1)

    if config.fetch_mode == "per_address" and not config.address_list_file:
        bt.logging.warning({"whitelist_config": "per_address mode without address list, universe is the stored addresses only"})

    bt.logging.info({
        "whitelist_config": {
            "rpc_url": config.rpc_url,
            "fetch_mode": config.fetch_mode,
            "poll_interval": config.poll_interval,
            "min_stake": str(config.min_stake_threshold),
            "db_path": config.db_path,
            "http_port": config.http_port,
        }
    })

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown = asyncio.Event()

    # Graceful shutdown
    def _signal_handler(sig, frame):
        bt.logging.info({"whitelist": "shutdown_signal_received"})
        loop.call_soon_threadsafe(shutdown.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(serve(config, shutdown))
    except KeyboardInterrupt:
        bt.logging.info({"whitelist": "keyboard_interrupt"})
    finally:
        loop.close()
        bt.logging.info({"whitelist": "stopped"})


if __name__ == "__main__":
    main()
