#!/usr/bin/env python3
"""
rkeplan/cli/plan.py

Helpers for working with the plan and bootstrap channels by hand:
  - digest:  print the URL-safe base64 SHA-256 digest of a token, i.e. the
             value a bootstrap script carries for that token
  - inspect: decode a plan secret (JSON or YAML, e.g. from
             `kubectl get secret <name> -o json`) and print its plan, applied
             plan and whether the node is in sync
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Callable, Coroutine, Dict, List, Optional

import aiofiles
import yaml
from pydantic import ValidationError

from rkeplan.models.k8s import Secret
from rkeplan.models.plan import node_from_secret
from rkeplan.models.validator import validate_type
from rkeplan.secrets.bootstrap import token_digest


async def _read_bytes(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    async with aiofiles.open(path, mode="rb") as f:
        return await f.read()


async def run_digest(args: argparse.Namespace) -> None:
    """
    Print the token digest over the exact bytes of the token file, as the
    controller hashes the secret's token value; a trailing newline counts.
    """
    try:
        token = await _read_bytes(args.token_file)
    except OSError as exc:
        print(f"Error: cannot read token: {exc}", file=sys.stderr)
        sys.exit(1)
    if not token:
        print("Error: token is empty", file=sys.stderr)
        sys.exit(1)
    print(token_digest(token))


async def run_inspect(args: argparse.Namespace) -> None:
    """Print {plan, appliedPlan, inSync} for a plan secret."""
    try:
        raw = await _read_bytes(args.file)
        manifest: Dict[str, Any] = yaml.safe_load(raw)
        secret = validate_type(manifest, Secret)
        node = node_from_secret(secret)
    except (OSError, ValueError, yaml.YAMLError, ValidationError) as exc:
        print(f"Error: cannot decode plan secret: {exc}", file=sys.stderr)
        sys.exit(1)

    print(
        json.dumps(
            node.model_dump(by_alias=True, exclude_none=True, mode="json"),
            indent=2,
            sort_keys=True,
        )
    )


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="rkeplanctl plan", description="Plan/bootstrap channel helpers."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    digest = sub.add_parser("digest", help="Print the bootstrap digest of a token.")
    digest.add_argument(
        "--token-file",
        required=True,
        help="Token file, or - for stdin. Hashed byte for byte (no newline stripping).",
    )
    digest.set_defaults(func=run_digest)

    inspect = sub.add_parser("inspect", help="Decode a plan secret.")
    inspect.add_argument("--file", required=True, help="Secret JSON/YAML, or - for stdin.")
    inspect.set_defaults(func=run_inspect)

    args = parser.parse_args(argv)
    func: Callable[[argparse.Namespace], Coroutine[Any, Any, None]] = args.func
    asyncio.run(func(args))


if __name__ == "__main__":
    main()
