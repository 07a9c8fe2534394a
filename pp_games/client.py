from __future__ import annotations

import logging
from datetime import date
from typing import Any

import requests
from django.conf import settings


logger = logging.getLogger(__name__)

DEFAULT_NHL_API_BASE_URL = 'https://api-web.nhle.com/v1'
DEFAULT_USER_AGENT = 'Puckpool/1.0'


class UpstreamUnavailable(Exception):
    """The NHL API could not be reached, timed out, or answered with an error."""


class NhlApiClient:
    """Thin wrapper around the public NHL web API.

    Only two documents are needed by the lifecycle core: the rolling week
    schedule and the per-game landing document. Every failure mode (timeout,
    connection error, HTTP >= 400, non-JSON body) is raised as
    ``UpstreamUnavailable`` so callers have a single thing to absorb.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        user_agent: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (
            base_url
            or str(getattr(settings, 'NHL_API_BASE_URL', '') or '').strip()
            or DEFAULT_NHL_API_BASE_URL
        ).rstrip('/')
        self.timeout = float(timeout or getattr(settings, 'NHL_API_TIMEOUT_SECONDS', 10.0) or 10.0)
        self.user_agent = (
            user_agent
            or str(getattr(settings, 'NHL_API_USER_AGENT', '') or '').strip()
            or DEFAULT_USER_AGENT
        )
        self.session = session or requests.Session()

    def _get(self, path: str) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug('Fetching %s', url)
        try:
            resp = self.session.get(
                url,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f'NHL API request failed: {exc}') from exc

        if resp.status_code >= 400:
            raise UpstreamUnavailable(f'NHL API error: HTTP {resp.status_code} for {url}')

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f'NHL API returned a non-JSON body for {url}') from exc

    def fetch_schedule(self, day: date | None = None) -> dict[str, Any]:
        path = f'schedule/{day.isoformat()}' if day else 'schedule/now'
        data = self._get(path)
        return data if isinstance(data, dict) else {}

    def fetch_game_landing(self, game_id: str) -> dict[str, Any]:
        data = self._get(f'gamecenter/{game_id}/landing')
        return data if isinstance(data, dict) else {}
