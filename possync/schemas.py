from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any

# Print job statuses
QUEUED = "queued"
PROCESSING = "processing"
RETRY = "retry"
DONE = "done"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({DONE, FAILED})
ELIGIBLE_STATUSES = (QUEUED, RETRY)


class CatalogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price: float = 0.0
    category: str = "General"
    source_updated_at: int = Field(0, description="Remote updatedAt, epoch ms")


class OrderItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    dish_id: str
    qty: int = 1
    opts: Dict[str, Any] = Field(default_factory=dict)


class Order(BaseModel):
    # Opaque to the sync engine; it only travels as a mutation payload
    model_config = ConfigDict(from_attributes=True)

    id: str
    items: List[OrderItem] = Field(default_factory=list)
    total: float = 0.0
    status: str = "pending"
    updated_at: int = 0
    version: int = 1


class MutationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    op_id: int
    ts: int
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class PrintJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    destination: str = "receipt"
    priority: int = 0
    template: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)
    status: str = QUEUED
    retries: int = 0
    created_at: int
    last_attempt_at: Optional[int] = None
    next_attempt_at: Optional[int] = None
    done_at: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class PushAck(BaseModel):
    acked_ids: List[int] = Field(default_factory=list)
