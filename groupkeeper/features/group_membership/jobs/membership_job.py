"""
Membership worker.

Pops at most one Add and one Remove request per cycle and runs each through
its flow, strictly one at a time: the messaging connection is shared and the
platform is rate sensitive. Incoming messages are dispatched concurrently to
moderation (groups and channels) and contact authorization (direct chats).
"""

import asyncio
import signal
import time
from datetime import UTC, datetime

from groupkeeper.config import settings
from groupkeeper.db.pool import db_pool
from groupkeeper.features.authorization.service import AuthorizationService, resolve_worker
from groupkeeper.features.group_membership.domain import AddWorkItem, RemoveWorkItem, Worker
from groupkeeper.features.group_membership.domain.identity import is_shared_chat
from groupkeeper.features.group_membership.errors import (
    InvalidIdentityError,
    InvalidWorkItemError,
)
from groupkeeper.features.group_membership.services.add_service import AddMembershipService
from groupkeeper.features.group_membership.services.remove_service import (
    RemoveMembershipService,
)
from groupkeeper.features.moderation.service import ModerationService
from groupkeeper.infrastructure.observability.logging import get_logger, setup_logging
from groupkeeper.services.infrastructure.redis_client import RedisQueueClient, redis_client
from groupkeeper.services.messaging_client import (
    IncomingMessage,
    MessageHandler,
    MessagingClient,
    load_messaging_client,
)
from groupkeeper.services.notification_service import TelegramNotifier
from groupkeeper.utils.bounded_call import BoundedCaller

logger = get_logger(__name__)

# Per-queue outcome labels reported in cycle summaries
EMPTY = "empty"
DONE = "done"
NOT_FULFILLED = "not_fulfilled"
INVALID = "invalid"
ERROR = "error"


class QueueConsumer:
    """Destructive pops from the work queues. A popped item is never requeued."""

    def __init__(
        self,
        redis: RedisQueueClient = redis_client,
        add_key: str | None = None,
        remove_key: str | None = None,
    ):
        self.redis = redis
        self.add_key = add_key or settings.ADD_QUEUE_KEY
        self.remove_key = remove_key or settings.REMOVE_QUEUE_KEY

    async def pop_add(self) -> AddWorkItem | None:
        """
        Raises:
            InvalidWorkItemError: If the popped payload is malformed (it is gone from the queue)
        """
        raw = await self.redis.pop_left(self.add_key)
        if raw is None:
            return None
        return AddWorkItem.from_payload(raw)

    async def pop_remove(self) -> RemoveWorkItem | None:
        raw = await self.redis.pop_left(self.remove_key)
        if raw is None:
            return None
        return RemoveWorkItem.from_payload(raw)


class MembershipJob:
    """Sequential consumer of the add and remove queues."""

    def __init__(
        self,
        consumer: QueueConsumer,
        add_service: AddMembershipService,
        remove_service: RemoveMembershipService,
    ):
        self.consumer = consumer
        self.add_service = add_service
        self.remove_service = remove_service
        self.cycles = 0
        self.last_run_time: datetime | None = None

    async def run_cycle(self) -> dict:
        """
        Process at most one Add and one Remove request.

        Errors escaping a flow are logged and the item is dropped; they never
        end the cycle early.
        """
        started = time.monotonic()
        summary = {
            "add": await self._run_add(),
            "remove": await self._run_remove(),
        }
        self.cycles += 1
        self.last_run_time = datetime.now(UTC)
        summary["duration_ms"] = round((time.monotonic() - started) * 1000, 1)

        if summary["add"] != EMPTY or summary["remove"] != EMPTY:
            logger.info("Membership cycle completed", cycle=self.cycles, **summary)
        return summary

    async def _run_add(self) -> str:
        try:
            item = await self.consumer.pop_add()
        except InvalidWorkItemError as e:
            logger.error("Discarding malformed add request", error=str(e), payload=e.payload)
            return INVALID
        except Exception as e:
            logger.error("Failed to pop add queue", error=str(e), error_type=type(e).__name__)
            return ERROR
        if item is None:
            return EMPTY

        try:
            result = await self.add_service.process(item)
        except InvalidIdentityError as e:
            logger.error("Discarding add request", request_id=item.request_id, error=str(e))
            return INVALID
        except Exception as e:
            logger.error(
                "Add request failed",
                request_id=item.request_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return ERROR

        logger.info("Add request processed", request_id=item.request_id, **result.to_dict())
        return DONE if result.fulfilled else NOT_FULFILLED

    async def _run_remove(self) -> str:
        try:
            item = await self.consumer.pop_remove()
        except InvalidWorkItemError as e:
            logger.error("Discarding malformed remove request", error=str(e), payload=e.payload)
            return INVALID
        except Exception as e:
            logger.error("Failed to pop remove queue", error=str(e), error_type=type(e).__name__)
            return ERROR
        if item is None:
            return EMPTY

        try:
            result = await self.remove_service.process(item)
        except InvalidIdentityError as e:
            logger.error(
                "Discarding remove request", registration_id=item.registration_id, error=str(e)
            )
            return INVALID
        except Exception as e:
            logger.error(
                "Remove request failed",
                registration_id=item.registration_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return ERROR

        return DONE if result.removed else NOT_FULFILLED

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Run cycles until `stop_event` is set, pausing the poll interval between them."""
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Membership worker loop started",
            add_queue=self.consumer.add_key,
            remove_queue=self.consumer.remove_key,
            poll_interval_seconds=settings.QUEUE_POLL_INTERVAL_SECONDS,
        )

        while not stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=settings.QUEUE_POLL_INTERVAL_SECONDS
                )
            except TimeoutError:
                pass

        logger.info("Membership worker loop stopped", cycles=self.cycles)


def make_message_handler(
    moderation: ModerationService, authorization: AuthorizationService, worker: Worker
) -> MessageHandler:
    """Group and channel messages go to moderation, direct messages authorize their sender."""

    async def handle(message: IncomingMessage) -> None:
        if is_shared_chat(message.chat_address):
            await moderation.handle_message(message)
        else:
            await authorization.handle_message(message, worker)

    return handle


def subscribe_events(
    client: MessagingClient,
    moderation: ModerationService,
    authorization: AuthorizationService,
    worker: Worker,
) -> None:
    client.subscribe_messages(make_message_handler(moderation, authorization, worker))
    client.subscribe_reconnect(moderation.handle_reconnect)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable", signal=sig.name)


async def start_membership_worker() -> None:
    """
    Entry point for the membership worker process.

    Startup order: logging, database pool, Redis, messaging client, worker
    identity, message subscription, contact sync, queue loop. Shutdown runs
    in reverse and logs, rather than raises, individual close errors.
    """
    setup_logging(settings.LOG_LEVEL)
    logger.info("Membership worker starting", environment=settings.environment)

    notifier = TelegramNotifier()
    client = None
    startup_tasks = []

    try:
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        await redis_client.initialize()
        startup_tasks.append("redis")

        client = await load_messaging_client(settings.MESSAGING_CLIENT_FACTORY)
        startup_tasks.append("messaging_client")

        worker = await resolve_worker(client)
        caller = BoundedCaller()
        authorization = AuthorizationService()
        moderation = ModerationService(client, notifier, caller=caller)
        subscribe_events(client, moderation, authorization, worker)

        try:
            contacts = await client.list_direct_contacts()
            await authorization.sync_contacts(contacts, worker)
        except Exception as e:
            logger.error("Initial contact authorization failed", error=str(e))

        job = MembershipJob(
            QueueConsumer(redis_client),
            AddMembershipService(client, worker, notifier, caller=caller),
            RemoveMembershipService(client, notifier, caller=caller),
        )

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        await job.run(stop_event)

    except Exception as e:
        logger.error("Membership worker failed", error=str(e), completed_tasks=startup_tasks)
        raise

    finally:
        await _shutdown(client, notifier, startup_tasks)


async def _shutdown(client, notifier: TelegramNotifier, startup_tasks: list[str]) -> None:
    shutdown_errors = []

    if client is not None:
        try:
            await client.close()
        except Exception as e:
            shutdown_errors.append(f"Messaging client: {e}")

    try:
        await notifier.close()
    except Exception as e:
        shutdown_errors.append(f"Notifier: {e}")

    if "redis" in startup_tasks:
        try:
            await redis_client.close()
        except Exception as e:
            shutdown_errors.append(f"Redis: {e}")

    if "database_pool" in startup_tasks:
        try:
            await db_pool.close()
        except Exception as e:
            shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("Membership worker stopped")
