#!/usr/bin/env python
"""CLI utility to encrypt or decrypt a JSON payload with a KMS-wrapped data key."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from sqs_toolkit.common.encryption import EnvelopeEncryption
from sqs_toolkit.core.errors import SqsToolkitError


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Encrypt or decrypt a JSON payload using envelope encryption.")
    parser.add_argument("--key", default=None, help="KMS key id, ARN or alias used to wrap data keys.")
    parser.add_argument("--region", default="us-west-2", help="AWS region of the KMS key.")
    parser.add_argument("-d", "--decrypt", action="store_true", help="Decrypt an envelope instead of encrypting.")
    parser.add_argument("--data", dest="data_option", default=None, help="JSON payload (or envelope when decrypting).")
    parser.add_argument("data", nargs="?", default=None, help="JSON payload, as an alternative to --data.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None, kms_client: Any = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not args.key:
        logging.error("key was not specified (use --key=<kms-key-alias>)")
        return 1
    raw = args.data_option or args.data
    if not raw:
        logging.error("data was not specified")
        return 1

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logging.error("data is not valid JSON: %s", exc)
        return 1

    encryption = EnvelopeEncryption(args.key, kms_client=kms_client, region_name=args.region)
    operation = encryption.decrypt if args.decrypt else encryption.encrypt
    try:
        result = asyncio.run(operation(payload))
    except SqsToolkitError as exc:
        logging.error("Operation failed: %s", exc)
        return 1

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
