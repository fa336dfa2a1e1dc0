# possync/models/audit_log.py
from collections import deque
from typing import Deque, Dict, List, Any
import time


class AuditLog:
    """Bounded, in-memory record of printer activity for operators."""

    def __init__(self, maxlen: int = 500):
        self._entries: Deque[Dict[str, Any]] = deque(maxlen=maxlen)

    def add(self, action: str, details: str) -> None:
        self._entries.append({
            "action": action,
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "details": details,
        })

    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def lines(self) -> List[str]:
        return [f"[printer] {e['action']} {e['details']} @ {e['timestamp']}" for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
