# The MIT License (MIT)
# Copyright © 2023 Yuma Rao
# Copyright © 2023 Opentensor Foundation

# Permission is hereby granted, free of charge, to any person obtaining a copy of this software and associated
# documentation files (the “Software”), to deal in the Software without restriction, including without limitation
# the rights to use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so, subject to the following conditions:

# The above copyright notice and this permission notice shall be included in all copies or substantial portions of
# the Software.

# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO
# THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL
# THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION
# OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
# DEALINGS IN THE SOFTWARE.

"""Resolved configuration for the whitelist service and the batch fetcher.

Precedence (lowest to highest): model defaults < CLI flags < environment
variables named IDENA_WHITELIST__<FIELD>.
"""

from __future__ import annotations

import argparse
import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

ENV_PREFIX = "IDENA_WHITELIST__"


class WhitelistConfig(BaseModel):
    """Fully-resolved configuration value consumed by the core."""

    # Ingestion
    poll_interval: float = Field(default=600.0, gt=0, description="Seconds between ingestion cycles")
    batch_size: int = Field(default=100, ge=1, description="Addresses per batch in per_address mode")
    batch_pause: float = Field(default=0.1, ge=0, description="Pause between batches, seconds")
    fetch_mode: str = Field(default="bulk", pattern=r"^(bulk|per_address)$")
    address_list_file: str | None = None

    # Eligibility
    min_stake_threshold: Decimal = Field(default=Decimal("10000"), ge=0)

    # Remote authority
    rpc_url: str = "http://localhost:9009"
    rpc_key: str | None = None
    remote_timeout: float = Field(default=30.0, gt=0)

    # Persistence
    db_path: str = "identities.db"

    # HTTP
    http_host: str = "0.0.0.0"
    http_port: int = Field(default=3030, ge=0, le=65535)


class FetcherConfig(BaseModel):
    """JSON config file for the one-shot batch fetcher."""

    rpc_url: str
    rpc_key: str = ""
    output_file: str = "snapshot.json"
    address_list_file: str
    batch_size: int = Field(default=100, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0)
    batch_pause: float = Field(default=0.1, ge=0)


def add_args(parser: argparse.ArgumentParser) -> None:
    """Add service arguments to the parser.

    Defaults are None so unset flags fall through to model defaults.
    """
    parser.add_argument("--rpc.url", type=str, default=None, help="Idena node RPC endpoint.")
    parser.add_argument("--rpc.key", type=str, default=None, help="Idena node API key.")
    parser.add_argument("--rpc.timeout", type=float, default=None, help="Per-call timeout in seconds.")
    parser.add_argument("--ingest.poll_interval", type=float, default=None, help="Seconds between ingestion cycles.")
    parser.add_argument("--ingest.batch_size", type=int, default=None, help="Addresses per batch (per_address mode).")
    parser.add_argument("--ingest.batch_pause", type=float, default=None, help="Pause between batches in seconds.")
    parser.add_argument(
        "--ingest.fetch_mode",
        type=str,
        choices=["bulk", "per_address"],
        default=None,
        help="Use dna_identities (bulk) or dna_identity per address.",
    )
    parser.add_argument("--ingest.address_list", type=str, default=None, help="File with one address per line.")
    parser.add_argument("--eligibility.min_stake", type=str, default=None, help="Minimum stake (iDNA).")
    parser.add_argument("--db.path", type=str, default=None, help="SQLite database file.")
    parser.add_argument("--http.host", type=str, default=None)
    parser.add_argument("--http.port", type=int, default=None)


# CLI dest -> config field
_ARG_FIELDS = {
    "rpc.url": "rpc_url",
    "rpc.key": "rpc_key",
    "rpc.timeout": "remote_timeout",
    "ingest.poll_interval": "poll_interval",
    "ingest.batch_size": "batch_size",
    "ingest.batch_pause": "batch_pause",
    "ingest.fetch_mode": "fetch_mode",
    "ingest.address_list": "address_list_file",
    "eligibility.min_stake": "min_stake_threshold",
    "db.path": "db_path",
    "http.host": "http_host",
    "http.port": "http_port",
}


def load_config(
    args: argparse.Namespace | None = None,
    environ: dict[str, str] | None = None,
) -> WhitelistConfig:
    """Resolve a WhitelistConfig from CLI args and environment.

    Raises pydantic.ValidationError on invalid values.
    """
    values: dict[str, Any] = {}

    if args is not None:
        for dest, field_name in _ARG_FIELDS.items():
            value = getattr(args, dest, None)
            if value is not None:
                values[field_name] = value

    # Environment variables have HIGHEST priority (override CLI)
    env = os.environ if environ is None else environ
    for field_name in WhitelistConfig.model_fields:
        env_value = env.get(f"{ENV_PREFIX}{field_name.upper()}")
        if env_value:
            values[field_name] = env_value

    return WhitelistConfig(**values)


def load_fetcher_config(path: str | Path) -> FetcherConfig:
    """Read the batch fetcher's JSON config file."""
    with open(path) as f:
        data = json.load(f)
    return FetcherConfig(**data)


def load_addresses(path: str | Path) -> list[str]:
    """Read one address per line, skipping blanks and '#' comments."""
    addresses: list[str] = []
    with open(path) as f:
        for line in f:
            address = line.strip()
            if address and not address.startswith("#"):
                addresses.append(address)
    return addresses


__all__ = [
    "ENV_PREFIX",
    "FetcherConfig",
    "WhitelistConfig",
    "add_args",
    "load_addresses",
    "load_config",
    "load_fetcher_config",
]
