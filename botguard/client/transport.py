"""Fire-and-forget delivery of batches to the ingestion endpoint."""

import logging
import threading
from typing import Optional
from urllib.parse import urljoin

import requests

from botguard.models import Batch

logger = logging.getLogger("botguard.client")


class BeaconTransport:
    """POSTs batches on a background thread and never reports the outcome.

    Like a browser beacon, ``send`` returns immediately and the request
    survives the caller going away. Failures are logged at debug level and
    dropped; there is no retry.
    """

    def __init__(self, base_url: str = "", session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout = timeout

    def url_for(self, endpoint: str) -> str:
        if not self.base_url:
            return endpoint
        return urljoin(self.base_url.rstrip("/") + "/", endpoint.lstrip("/"))

    def send(self, endpoint: str, batch: Batch) -> threading.Thread:
        thread = threading.Thread(target=self._post, args=(self.url_for(endpoint), batch.to_wire()), daemon=True)
        thread.start()
        return thread

    def _post(self, url: str, body: dict) -> None:
        try:
            self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("Batch delivery to %s failed: %s", url, e)
