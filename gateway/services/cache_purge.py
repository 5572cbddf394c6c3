"""Edge cache purge for deleted files."""

from typing import List
from urllib.parse import quote

import httpx

from common.logging_config import get_logger
from gateway.config import Settings
from gateway.types import CleanupOutcome

logger = get_logger(__name__)


def purge_urls(origin: str, identifier: str) -> List[str]:
    base = origin.rstrip("/")
    urls = [f"{base}/file/{identifier}"]
    encoded = quote(identifier, safe="")
    if encoded != identifier:
        urls.append(f"{base}/file/{encoded}")
    return urls


class CachePurger:
    """
    Asks the configured edge cache to drop the file URLs of an identifier.

    The purge endpoint receives ``{"files": [...]}`` (Cloudflare purge API
    shape) with the token as a bearer credential.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    async def purge(self, origin: str, identifier: str) -> CleanupOutcome:
        outcome = CleanupOutcome(operation="cache-purge")
        if not self.settings.cache_purge_url:
            outcome.skipped = True
            return outcome

        headers = {}
        if self.settings.cache_purge_token:
            headers["Authorization"] = f"Bearer {self.settings.cache_purge_token}"

        base = self.settings.public_base_url or origin
        try:
            response = await self.client.post(
                self.settings.cache_purge_url,
                json={"files": purge_urls(base, identifier)},
                headers=headers,
            )
            if response.is_success:
                outcome.record_success()
            else:
                outcome.record_failure(f"HTTP {response.status_code}")
        except httpx.HTTPError as e:
            outcome.record_failure(str(e))

        if not outcome.ok:
            logger.warning(f"Edge cache purge failed (non-critical) [id={identifier}]: {outcome.errors}")
        return outcome
