from __future__ import annotations

import httpx

from entityscope.config import settings
from entityscope.core.models.interfaces import (
    FailureKind,
    FetchedPage,
    FetchFailure,
    FetchOutcome,
)
from entityscope.services.logger import RunLog
from entityscope.tools import web_utils

DEFAULT_IDENTITIES: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
)

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class ContentFetcher:
    """Fetch a page's text, rotating client identities on failure.

    ``fetch`` never raises: every outcome is a ``FetchedPage`` or a typed
    ``FetchFailure``. Text shorter than ``min_content_chars`` triggers the next
    identity; if every identity only yields thin text the longest one is
    returned with ``thin=True``.
    """

    def __init__(
        self,
        *,
        identities: tuple[str, ...] = DEFAULT_IDENTITIES,
        timeout_seconds: float | None = None,
        min_content_chars: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not identities:
            raise ValueError("at least one client identity is required")
        self.identities = identities
        self.timeout_seconds = max(
            float(timeout_seconds if timeout_seconds is not None else settings.fetch_timeout_seconds),
            1.0,
        )
        self.min_content_chars = max(
            int(min_content_chars if min_content_chars is not None else settings.fetch_min_content_chars),
            0,
        )
        self._http_client = http_client

    async def fetch(self, url: str, *, run_log: RunLog | None = None) -> FetchOutcome:
        run_log = run_log or RunLog()
        if not web_utils.is_valid_url(url):
            return FetchFailure(url=url, kind=FailureKind.UNREACHABLE, detail="invalid url", attempts=0)

        if self._http_client is not None:
            return await self._fetch_with(self._http_client, url, run_log)
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=True,
        ) as client:
            return await self._fetch_with(client, url, run_log)

    async def _fetch_with(
        self,
        client: httpx.AsyncClient,
        url: str,
        run_log: RunLog,
    ) -> FetchOutcome:
        last_failure = FetchFailure(url=url, kind=FailureKind.UNREACHABLE, detail="not attempted", attempts=0)
        thin_page: FetchedPage | None = None

        for attempt, identity in enumerate(self.identities, start=1):
            try:
                response = await client.get(
                    url,
                    headers={**BASE_HEADERS, "User-Agent": identity},
                    timeout=self.timeout_seconds,
                )
            except httpx.TimeoutException as exc:
                last_failure = FetchFailure(url, FailureKind.TIMEOUT, str(exc) or "timed out", attempt)
                continue
            except httpx.HTTPError as exc:
                last_failure = FetchFailure(url, FailureKind.UNREACHABLE, str(exc) or type(exc).__name__, attempt)
                continue

            if not response.is_success:
                last_failure = FetchFailure(url, FailureKind.UNREACHABLE, f"HTTP {response.status_code}", attempt)
                continue

            text = web_utils.html_to_text(response.text)
            if not text:
                last_failure = FetchFailure(url, FailureKind.EMPTY_BODY, "empty body", attempt)
                continue

            page = FetchedPage(
                url=url,
                text=text,
                status_code=response.status_code,
                attempts=attempt,
                thin=len(text) < self.min_content_chars,
            )
            if not page.thin:
                run_log.progress(f"Fetched {url}: {len(text)} chars (attempt {attempt})")
                return page
            if thin_page is None or len(page.text) > len(thin_page.text):
                thin_page = page

        if thin_page is not None:
            run_log.progress(f"Fetched {url}: only {len(thin_page.text)} chars after {len(self.identities)} identities")
            return FetchedPage(
                url=thin_page.url,
                text=thin_page.text,
                status_code=thin_page.status_code,
                attempts=len(self.identities),
                thin=True,
            )

        run_log.warning(f"Fetch failed for {url}: {last_failure.kind} ({last_failure.detail})")
        return last_failure
