#===========================================================================
# possync/remote/authority.py
# Remote authority interface: push the mutation log, pull the catalog.
# Both calls are retry-safe; re-sending an acked batch is harmless.
#===========================================================================

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx

from possync.schemas import CatalogEntry, MutationRecord, PushAck

logger = logging.getLogger("uvicorn.error")


class RemoteAuthority(ABC):
    @abstractmethod
    async def push_mutations(self, batch: Sequence[MutationRecord]) -> PushAck:
        """Submit a batch; the ack may name any subset of the submitted op_ids."""

    @abstractmethod
    async def pull_catalog(self) -> List[CatalogEntry]:
        """Full authoritative catalog."""


# --- Helpers ---------------------------------------------------------------

def _json_or_text(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except Exception:
        return resp.text


def _to_epoch_ms(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value))
    except ValueError:
        pass
    try:
        # "2025-01-01T10:00:00Z" style
        return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        logger.warning("[REMOTE] unparseable updatedAt=%r; using 0", value)
        return 0


def catalog_entry_from_wire(row: Dict[str, Any]) -> CatalogEntry:
    return CatalogEntry(
        id=str(row.get("id")),
        name=row.get("name") or "",
        price=float(row.get("price") or 0),
        category=row.get("category") or "General",
        source_updated_at=_to_epoch_ms(row.get("updatedAt", row.get("updated_at"))),
    )


def mutation_to_wire(op: MutationRecord) -> Dict[str, Any]:
    return {"opId": op.op_id, "ts": op.ts, "type": op.type, "payload": op.payload}


def filter_acks(batch: Sequence[MutationRecord], acked: Sequence[Any]) -> List[int]:
    """
    Keep only ids that were part of the batch, in batch order. Anything else
    the server names is ignored so a stray ack can never drop an unsent write.
    """
    submitted = [op.op_id for op in batch]
    wanted = set()
    for raw in acked or []:
        try:
            wanted.add(int(raw))
        except (TypeError, ValueError):
            logger.warning("[REMOTE] ignoring malformed ack id %r", raw)
    stray = wanted - set(submitted)
    if stray:
        logger.warning("[REMOTE] server acked ids that were not submitted: %s", sorted(stray))
    return [op_id for op_id in submitted if op_id in wanted]


# --- HTTP implementation ---------------------------------------------------

class HttpRemoteAuthority(RemoteAuthority):
    """
    POST {base}/api/pos/mutations  {"mutations": [...]}  -> {"ackedIds": [...]}
    GET  {base}/api/pos/catalog                          -> [...] | {"data": [...]}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            r = await self._client.request(method, url, headers=self._headers(), **kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.request(method, url, headers=self._headers(), **kwargs)
        if r.status_code >= 400:
            raise httpx.HTTPStatusError(f"{method} {path} failed: {_json_or_text(r)}", request=r.request, response=r)
        return r.json()

    async def push_mutations(self, batch: Sequence[MutationRecord]) -> PushAck:
        if not batch:
            return PushAck()
        logger.info("[REMOTE] pushing %d mutation(s)", len(batch))
        data = await self._request("POST", "/api/pos/mutations", json={"mutations": [mutation_to_wire(op) for op in batch]})
        raw = []
        if isinstance(data, dict):
            raw = data.get("ackedIds") or data.get("acked") or []
        return PushAck(acked_ids=filter_acks(batch, raw))

    async def pull_catalog(self) -> List[CatalogEntry]:
        data = await self._request("GET", "/api/pos/catalog")
        rows = data.get("data", []) if isinstance(data, dict) else data
        entries = [catalog_entry_from_wire(row) for row in rows or [] if isinstance(row, dict) and row.get("id") is not None]
        logger.info("[REMOTE] pulled %d catalog entries", len(entries))
        return entries
