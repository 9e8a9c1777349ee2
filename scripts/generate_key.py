#!/usr/bin/env python3
"""Print a new RSA signing key in the format PRIVATE_KEY expects.

Usage:
    python scripts/generate_key.py
    PRIVATE_KEY=$(python scripts/generate_key.py) uvicorn correlauth.app:app

    # Write straight into a .env file:
    python scripts/generate_key.py --env-file .env
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a base64 PKCS#1 RSA private key")
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Append PRIVATE_KEY=<key> to this file instead of printing the key",
    )
    args = parser.parse_args()

    from correlauth.service.tokens import generate_key

    key = generate_key()
    if args.env_file:
        with args.env_file.open("a", encoding="utf-8") as fh:
            fh.write(f"PRIVATE_KEY={key}\n")
        print(f"PRIVATE_KEY written to {args.env_file}", file=sys.stderr)
    else:
        print(key)
    return 0


if __name__ == "__main__":
    sys.exit(main())
