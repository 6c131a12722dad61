#!/usr/bin/env python3
"""Operator helper: print messages that stopped retrying and need manual reconciliation.
Usage: DATABASE_URL=postgresql+asyncpg://... python scripts/list_undeliverable.py [limit]"""
import asyncio
import sys

from deadswitch.db.session import async_session_maker
from deadswitch.domain.message import mask_email
from deadswitch.repositories.messages import MessageRepository


async def main(limit: int) -> None:
    async with async_session_maker() as session:
        messages = await MessageRepository(session).find_undeliverable(limit)
    if not messages:
        print("No undeliverable messages")
        return
    for m in messages:
        print(
            f"{m.id}  switch={m.switch_id}  to={mask_email(m.recipient_email)}  "
            f"attempts={m.delivery_attempts}  failed_at={m.failed_at:%Y-%m-%d %H:%M}  reason={m.failure_reason}"
        )


if __name__ == "__main__":
    asyncio.run(main(int(sys.argv[1]) if len(sys.argv) > 1 else 100))
