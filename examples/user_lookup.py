import asyncio
import logging
import random

from coalescer import (
    BatcherTimeoutError,
    CancellationToken,
    PendingRequest,
    batched,
    settle_from_mapping,
)
from coalescer.utils.logging import setup_logging

USERS = {f"u{i}": {"id": f"u{i}", "name": f"user {i}"} for i in range(1, 7)}


async def select_users_many(ids: list[str]) -> dict[str, dict]:
    # one round trip for the whole batch
    await asyncio.sleep(0.05)
    return {user_id: USERS[user_id] for user_id in ids if user_id in USERS}


@batched(period_seconds=0.1, timeout_seconds=60)
async def load_users(batch: list[PendingRequest[str, dict]], token: CancellationToken) -> None:
    users = await select_users_many([request.content for request in batch])
    token.raise_if_cancelled()
    settle_from_mapping(batch, users, missing=lambda user_id: LookupError("user not found"))


async def authorize(jwt: str) -> dict | None:
    user_id = f"u{random.randint(1, 10)}"
    try:
        return await load_users.run(user_id)
    except (LookupError, BatcherTimeoutError):
        return None


async def main():
    setup_logging(level=logging.DEBUG)
    users = await asyncio.gather(*(authorize(jwt=f"token-{i}") for i in range(100)))
    print(f"{sum(user is not None for user in users)} of {len(users)} requests authorized")
    await load_users.close()


if __name__ == "__main__":
    asyncio.run(main())
