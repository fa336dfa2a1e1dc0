# possync/printing/printers.py
# Printing collaborators used by the dispatch queue. deliver() returns on
# success and raises PrintDeliveryError on any failure.

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx

from possync.errors import PrintDeliveryError
from possync.schemas import PrintJob

logger = logging.getLogger("uvicorn.error")


class Printer(ABC):
    @abstractmethod
    async def deliver(self, job: PrintJob) -> None:
        ...


class LogPrinter(Printer):
    """Writes the ticket to the log. Used when no printer endpoints are configured."""

    async def deliver(self, job: PrintJob) -> None:
        logger.info("[PRINT] %s#%s\n%s", job.destination, job.id, job.template)


class HttpPrinter(Printer):
    """
    Posts the rendered ticket to a print server per destination, e.g.
    {"receipt": "http://10.0.0.5:8000/print", "kitchen": "http://10.0.0.6:8000/print"}.
    """

    def __init__(
        self,
        endpoints: Dict[str, str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoints = {k: (v or "").rstrip("/") for k, v in (endpoints or {}).items()}
        self.timeout = timeout
        self._client = client

    async def deliver(self, job: PrintJob) -> None:
        url = self.endpoints.get(job.destination)
        if not url:
            raise PrintDeliveryError(job.destination, "no printer configured for destination")
        body = {"jobId": job.id, "destination": job.destination, "text": job.template, "meta": job.meta}
        try:
            if self._client is not None:
                r = await self._client.post(url, json=body, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise PrintDeliveryError(job.destination, f"{type(e).__name__}: {e}") from e
        if r.status_code >= 400:
            raise PrintDeliveryError(job.destination, f"HTTP {r.status_code}: {r.text[:200]}")
