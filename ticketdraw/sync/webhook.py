import os
import logging
from urllib.parse import urljoin
from typing import Any, Mapping, Optional

import requests
from dotenv import load_dotenv

from ..db.utils import env_int
from .events import TicketChangeEvent

logger = logging.getLogger(__name__)


class WebhookPublisher:
    """Post ticket change events to the sync service consumed by scanner UIs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = base_url or os.getenv("SYNC_WEBHOOK_URL")
        if not url:
            raise ValueError("Environment variable 'SYNC_WEBHOOK_URL' is not set")

        self.base_url = url.rstrip("/")
        self.token = token or os.getenv("SYNC_WEBHOOK_TOKEN")
        self.timeout = timeout or env_int(os.getenv("SYNC_WEBHOOK_TIMEOUT"), 10)
        self.session = session or requests.Session()

    # -------- headers --------
    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=self.headers,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def publish(self, event: TicketChangeEvent) -> None:
        # Token is never logged.
        logger.debug(f"Publishing change for {event.ticket_code} v{event.version}")
        self._request("POST", "/api/v1/ticket-changes", json=event.to_dict())
