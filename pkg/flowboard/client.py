# Flowboard: HTTP client
#
# Talks to a running board_server. Used by verify_board.py --server and by
# scripts that want to drive boards without importing the store.

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class FlowboardClient:
    """HTTP client for the Flowboard JSON API."""

    def __init__(self, base_url: str = "http://127.0.0.1:3000", api_key: str = ""):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = 5

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    def _request(self, method: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        """JSON body of a successful response; None on transport or HTTP error."""
        try:
            r = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            return None
        if not r.ok:
            logger.warning("%s %s returned %s: %s", method, path, r.status_code, r.text[:200])
            return None
        return r.json()

    def health(self) -> bool:
        """Check if the server is reachable."""
        try:
            r = requests.get(f"{self.base_url}/health", timeout=2)
            return r.ok
        except requests.RequestException:
            return False

    def list_boards(self, space: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"space": space} if space else None
        data = self._request("GET", "/api/boards", params=params)
        return data["boards"] if data else []

    def get_board(self, board_id: str) -> Optional[Dict[str, Any]]:
        data = self._request("GET", f"/api/boards/{board_id}")
        return data["board"] if data else None

    def create_task(self, column_id: str, title: str, **fields) -> Optional[Dict[str, Any]]:
        data = self._request("POST", f"/api/columns/{column_id}/tasks", json=dict(title=title, **fields))
        return data["task"] if data else None

    def move_task(self, task_id: str, column_id: str, index: Optional[int] = None) -> bool:
        body: Dict[str, Any] = {"column_id": column_id}
        if index is not None:
            body["index"] = index
        return self._request("POST", f"/api/tasks/{task_id}/move", json=body) is not None

    def carry_over(self, task_ids: List[str], target: str) -> Optional[Dict[str, Any]]:
        """Reschedule tasks. A 207 (partial failure) still returns the result."""
        try:
            r = requests.post(
                f"{self.base_url}/api/tasks/carry-over",
                json={"task_ids": list(task_ids), "target": target},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Carry-over failed: %s", e)
            return None
        if r.status_code in (200, 207):
            return r.json()
        logger.warning("Carry-over returned %s: %s", r.status_code, r.text[:200])
        return None

    def agenda(self, space: Optional[str] = None, window: str = "day",
               date: Optional[str] = None) -> Optional[Dict[str, Any]]:
        params = {"window": window}
        if space:
            params["space"] = space
        if date:
            params["date"] = date
        return self._request("GET", "/api/agenda", params=params)
