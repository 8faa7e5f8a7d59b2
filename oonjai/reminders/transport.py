from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import uuid

import requests

from .config import settings
from .errors import TransportFailure

logger = logging.getLogger(__name__)

PUSH_PATH = "/v2/bot/message/push"


@dataclass(frozen=True)
class PushResult:
    ok: bool
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None

    def raise_for_failure(self) -> None:
        if not self.ok:
            raise TransportFailure(self.describe(), status_code=self.status_code, body=self.body)

    def describe(self) -> str:
        if self.status_code is None:
            return f"LINE push failed: {self.error}"
        return f"LINE API error: {self.status_code} - {self.body}"


def retry_key_for(occurrence: str, destination_id: str) -> str:
    """Stable X-Line-Retry-Key so a resubmitted push is collapsed by LINE."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"oonjai:{occurrence}:{destination_id}"))


class LineMessagingClient:
    """One push per call; never retries. Failures come back as a PushResult."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.access_token = access_token if access_token is not None else settings.LINE_CHANNEL_ACCESS_TOKEN
        self.base_url = (base_url or settings.LINE_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.TRANSPORT_TIMEOUT_SECONDS

    def _headers(self, retry_key: Optional[str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }
        if retry_key:
            headers["X-Line-Retry-Key"] = retry_key
        return headers

    def push(self, destination_id: str, messages: List[Dict[str, Any]], retry_key: Optional[str] = None) -> PushResult:
        if not self.access_token:
            return PushResult(ok=False, error="LINE channel access token not configured")
        try:
            response = requests.post(
                f"{self.base_url}{PUSH_PATH}",
                json={"to": destination_id, "messages": messages},
                headers=self._headers(retry_key),
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.warning(f"[LINE] Push to {destination_id} timed out after {self.timeout}s")
            return PushResult(ok=False, error=f"timeout after {self.timeout}s")
        except requests.RequestException as e:
            logger.warning(f"[LINE] Push to {destination_id} failed: {e!r}")
            return PushResult(ok=False, error=repr(e))

        if response.ok:
            return PushResult(ok=True, status_code=response.status_code)
        # 409 means LINE already accepted a push with this retry key
        if response.status_code == 409 and retry_key:
            logger.info(f"[LINE] Push to {destination_id} already accepted (retry key {retry_key})")
            return PushResult(ok=True, status_code=response.status_code, body=response.text)
        logger.warning(f"[LINE] Push to {destination_id} rejected: {response.status_code} {response.text}")
        return PushResult(ok=False, status_code=response.status_code, body=response.text)
