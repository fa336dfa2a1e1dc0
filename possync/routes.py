#=======================================================================================
# possync/routes.py
# FastAPI routes for the terminal shell: sync status/trigger, catalog, order capture,
# print queue. Operator actions (requeue, pause, resume) live on admin_router and are
# mounted behind HTTP Basic in main_app.py.
#=======================================================================================

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from possync.errors import JobNotFoundError, JobStateError
from possync.printing import tickets
from possync.runtime import Runtime
from possync.schemas import Order, OrderItem

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["POS API"])
admin_router = APIRouter(prefix="/api/print", tags=["Print Admin"])


class CheckoutIn(BaseModel):
    id: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    total: float = 0.0
    status: str = "pending"
    print_tickets: bool = True


class PrintJobIn(BaseModel):
    destination: str = "receipt"
    priority: int = 0
    template: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)


def _rt(request: Request) -> Runtime:
    return request.app.state.runtime


# ---------------------------
# Sync
# ---------------------------

@router.get("/sync/status")
async def sync_status(request: Request):
    rt = _rt(request)
    pending = await rt.store.drain_oplog()
    return {**rt.sync.snapshot(), "pending_mutations": len(pending), "online": rt.connectivity.is_online()}


@router.post("/sync/run")
async def sync_run(request: Request):
    result = await _rt(request).sync.sync_once()
    return result.as_dict()


# ---------------------------
# Catalog / Orders
# ---------------------------

@router.get("/catalog")
async def catalog(request: Request):
    entries = await _rt(request).store.get_catalog()
    return {"data": [e.model_dump() for e in entries]}


@router.get("/orders")
async def list_orders(request: Request, status: Optional[str] = Query(None)):
    orders = await _rt(request).store.get_orders(status=status)
    return {"data": [o.model_dump() for o in orders]}


@router.post("/orders")
async def checkout(request: Request, body: CheckoutIn):
    """Capture an order locally, then queue its receipt and kitchen ticket."""
    rt = _rt(request)
    if not body.items:
        raise HTTPException(status_code=422, detail="order has no items")
    now = int(time.time() * 1000)
    order = Order(
        id=body.id or f"order-{now}",
        items=body.items,
        total=body.total,
        status=body.status,
        updated_at=now,
        version=1,
    )
    saved, op_id = await rt.store.add_order(order)

    jobs = []
    if body.print_tickets:
        dishes = {d.id: d for d in await rt.store.get_catalog()}
        lines = tickets.order_lines(saved, dishes)
        jobs.append(await rt.printer.enqueue(
            destination="receipt",
            priority=tickets.RECEIPT_PRIORITY,
            template=tickets.receipt_text(lines),
            meta={"orderId": saved.id, "lines": "\n".join(lines), "total": saved.total},
        ))
        jobs.append(await rt.printer.enqueue(
            destination="kitchen",
            priority=tickets.KITCHEN_PRIORITY,
            template=tickets.kitchen_text(lines),
            meta={"orderId": saved.id, "lines": "\n".join(lines)},
        ))
        await rt.printer.process_loop()

    return {"order": saved.model_dump(), "op_id": op_id, "print_jobs": [j.id for j in jobs]}


# ---------------------------
# Print queue
# ---------------------------

@router.get("/print/jobs")
async def list_print_jobs(request: Request, status: Optional[str] = Query(None)):
    statuses = [s.strip() for s in status.split(",") if s.strip()] if status else None
    jobs = await _rt(request).store.get_print_jobs(statuses=statuses)
    return {"data": [j.model_dump() for j in jobs]}


@router.post("/print/jobs")
async def enqueue_print_job(request: Request, body: PrintJobIn):
    job = await _rt(request).printer.enqueue(body.destination, body.priority, body.template, body.meta)
    return job.model_dump()


@router.get("/print/logs")
async def print_logs(request: Request):
    return {"data": _rt(request).printer.logs.lines()}


@admin_router.post("/jobs/{job_id}/requeue")
async def requeue_print_job(request: Request, job_id: int):
    try:
        job = await _rt(request).printer.requeue(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return job.model_dump()


@admin_router.post("/pause")
async def pause_printing(request: Request):
    _rt(request).printer.pause()
    return {"paused": True}


@admin_router.post("/resume")
async def resume_printing(request: Request):
    _rt(request).printer.resume()
    return {"paused": False}
