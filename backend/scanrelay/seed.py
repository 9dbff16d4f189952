"""
ScanRelay Backend - Bootstrap CLI
=================================

Creates an API key and prints the raw secret once. Every key route needs a
key already, so the first one comes from here (or the dashboard).

Usage:
    python -m scanrelay.seed --name "Backoffice" --email ops@example.com [--user-id u_123]
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from scanrelay.database import async_session_factory, dispose_engine
from scanrelay.services.credential_service import CredentialService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m scanrelay.seed",
        description="Create a ScanRelay API key.",
    )
    parser.add_argument("--name", required=True, help="Label for the key")
    parser.add_argument("--email", required=True, help="Owner email")
    parser.add_argument("--user-id", default=None, help="Dashboard user id to attach the key to")
    return parser


async def seed(name: str, email: str, user_id: Optional[str] = None) -> str:
    try:
        async with async_session_factory() as session:
            key, raw_key = await CredentialService(session).issue(
                name=name,
                owner_email=email,
                user_id=user_id,
            )
            await session.commit()
            logger.info("Seeded API key %s", key.id)
    finally:
        await dispose_engine()
    return raw_key


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    raw_key = asyncio.run(seed(args.name, args.email, args.user_id))
    print(f"API key created for {args.email}:")
    print(f"  {raw_key}")
    print("Store it now. It will not be shown again.")


if __name__ == "__main__":
    main()
