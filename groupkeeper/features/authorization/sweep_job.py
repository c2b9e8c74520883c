"""
One-shot authorization sweep.

Connects the messaging client, authorizes every phone-style direct contact
for this worker and exits. Useful after restoring a session, when contacts
exist that no incoming message has authorized yet.
"""

import asyncio

from groupkeeper.config import settings
from groupkeeper.db.pool import db_pool
from groupkeeper.features.authorization.service import AuthorizationService, resolve_worker
from groupkeeper.infrastructure.observability.logging import get_logger, setup_logging
from groupkeeper.services.messaging_client import load_messaging_client

logger = get_logger(__name__)


async def run_authorization_sweep() -> None:
    setup_logging(settings.LOG_LEVEL)
    logger.info("Starting authorization sweep")

    await db_pool.initialize()
    client = None
    try:
        client = await load_messaging_client(settings.MESSAGING_CLIENT_FACTORY)
        worker = await resolve_worker(client)
        contacts = await client.list_direct_contacts()
        count = await AuthorizationService().sync_contacts(contacts, worker)
        logger.info(
            "Authorization sweep completed",
            worker_id=worker.id,
            contacts_seen=len(contacts),
            authorized=count,
        )
    finally:
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                logger.error("Error closing messaging client", error=str(e))
        await db_pool.close()


if __name__ == "__main__":
    asyncio.run(run_authorization_sweep())
