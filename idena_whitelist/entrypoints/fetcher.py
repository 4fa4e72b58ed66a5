"""One-shot batch fetcher.

Reads a JSON config and an address list, fetches each identity with
dna_identity in fixed-size batches, and writes an offline snapshot file:

    idena-whitelist-fetch config.json
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import bittensor as bt
from dotenv import load_dotenv
from pydantic import ValidationError

from idena_whitelist.base.config import FetcherConfig, load_addresses, load_fetcher_config
from idena_whitelist.identity.models import OfflineSnapshot, SnapshotIdentity, utcnow
from idena_whitelist.rpc import IdentityRPCClient, IdentitySource


async def fetch_snapshot(
    addresses: list[str],
    source: IdentitySource,
    batch_size: int = 100,
    pause: float = 0.1,
) -> OfflineSnapshot:
    """Fetch every address and assemble the snapshot.

    Failed addresses keep their input order; identities keep fetch order.
    """
    timestamp = utcnow()
    result = await source.fetch_batch(addresses, batch_size, pause)
    return OfflineSnapshot(
        timestamp=timestamp,
        identities=[SnapshotIdentity.from_record(r) for r in result.records],
        total=len(addresses),
        successful=len(result.records),
        failed=list(result.failed),
    )


def save_snapshot(snapshot: OfflineSnapshot, path: str | Path) -> None:
    Path(path).write_text(snapshot.model_dump_json(indent=2))


async def run(config: FetcherConfig) -> OfflineSnapshot:
    addresses = load_addresses(config.address_list_file)
    bt.logging.info({"fetcher": {"status": "starting", "addresses": len(addresses)}})

    client = IdentityRPCClient(
        rpc_url=config.rpc_url,
        api_key=config.rpc_key,
        timeout=config.timeout_seconds,
    )
    try:
        snapshot = await fetch_snapshot(addresses, client, config.batch_size, config.batch_pause)
    finally:
        await client.close()

    save_snapshot(snapshot, config.output_file)
    bt.logging.info({
        "fetcher": {
            "status": "completed",
            "successful": snapshot.successful,
            "total": snapshot.total,
            "output_file": config.output_file,
        }
    })
    if snapshot.failed:
        bt.logging.warning({"fetcher_failed_addresses": snapshot.failed})
    return snapshot


def main(argv: list[str] | None = None) -> None:
    if os.environ.get("IDENA_WHITELIST_TEST_MODE") != "true":
        load_dotenv()

    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 1:
        bt.logging.error("Usage: idena-whitelist-fetch <config_file>")
        sys.exit(1)

    try:
        config = load_fetcher_config(argv[0])
    except (OSError, ValueError, ValidationError) as e:
        bt.logging.error({"fetcher_config_error": str(e)})
        sys.exit(1)

    try:
        asyncio.run(run(config))
    except OSError as e:
        bt.logging.error({"fetcher_error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
