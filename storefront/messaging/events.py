from typing import Optional
from uuid import UUID

from pydantic import BaseModel

AGGREGATE_ORDER = "ORDER"

EVENT_DELETE_CART = "DELETE_CART"

HEADER_EVENT_TYPE = "event_type"
HEADER_AGGREGATE_TYPE = "aggregate_type"
HEADER_AGGREGATE_ID = "aggregate_id"


class DeleteCartPayload(BaseModel):
    user_id: UUID
    order_id: Optional[UUID] = None


def encode_delete_cart(user_id: UUID, order_id: UUID) -> bytes:
    return DeleteCartPayload(user_id=user_id, order_id=order_id).model_dump_json().encode()


def routing_key(aggregate_type: str, event_type: str) -> str:
    """``ORDER`` + ``DELETE_CART`` -> ``order.delete_cart``."""
    return f"{aggregate_type}.{event_type}".lower()
