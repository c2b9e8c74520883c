"""
Read-only inspection of the add/remove work queues.
"""

from fastapi import APIRouter, HTTPException, Query

from groupkeeper.config import settings
from groupkeeper.features.group_membership.domain import AddWorkItem, RemoveWorkItem
from groupkeeper.features.group_membership.errors import InvalidWorkItemError
from groupkeeper.infrastructure.observability.logging import get_logger, mask_phone
from groupkeeper.services.infrastructure.redis_client import redis_client

logger = get_logger(__name__)

router = APIRouter(prefix="/queues", tags=["queues"])

QUEUE_PARSERS = {
    "add": AddWorkItem.from_payload,
    "remove": RemoveWorkItem.from_payload,
}


def _queue_key(name: str) -> str:
    return settings.ADD_QUEUE_KEY if name == "add" else settings.REMOVE_QUEUE_KEY


def _describe(name: str, raw: str) -> dict:
    try:
        item = QUEUE_PARSERS[name](raw)
    except InvalidWorkItemError as e:
        return {"valid": False, "error": str(e)}
    if isinstance(item, RemoveWorkItem):
        return {
            "valid": True,
            "registration_id": item.registration_id,
            "group_id": item.group_id,
            "community_id": item.community_id,
            "phone": mask_phone(item.phone) if settings.environment == "production" else item.phone,
            "reason": item.reason,
        }
    return {
        "valid": True,
        "request_id": item.request_id,
        "registration_id": item.registration_id,
        "group_id": item.group_id,
        "group_type": item.group_type,
    }


@router.get("")
async def list_queues():
    """Length of each work queue."""
    result = {}
    for name in QUEUE_PARSERS:
        key = _queue_key(name)
        result[name] = {"key": key, "length": await redis_client.length(key)}
    return result


@router.get("/{name}")
async def get_queue(name: str, limit: int = Query(50, ge=1, le=500)):
    """Pending items of one queue, oldest first, without consuming them."""
    if name not in QUEUE_PARSERS:
        raise HTTPException(status_code=404, detail=f"Unknown queue '{name}'")

    key = _queue_key(name)
    length = await redis_client.length(key)
    raw_items = await redis_client.peek(key, 0, limit - 1)
    return {
        "name": name,
        "key": key,
        "length": length,
        "items": [_describe(name, raw) for raw in raw_items],
    }
