"""
Discord webhook delivery.
"""

import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .. import __version__
from ..errors import DeliveryError
from ..logger import get_logger
from ..retry import RetryError, exponential_backoff, should_retry_http_status

logger = get_logger()

WEBHOOK_URL_RE = re.compile(
    r"^https://(?:\w+\.)?discord(?:app)?\.com/api/webhooks/(?P<id>\d+)/(?P<token>[\w-]+)/?$"
)

# Discord rejects messages with more embeds than this.
MAX_EMBEDS_PER_MESSAGE = 10


def parse_webhook_url(url: str) -> Tuple[str, str]:
    """Split a webhook URL into (id, token).

    Raises:
        ValueError: If the URL is not a Discord webhook URL
    """
    match = WEBHOOK_URL_RE.match(url or "")
    if match is None:
        raise ValueError(f"Not a Discord webhook URL: {url!r}")
    return match.group("id"), match.group("token")


class _RetryableStatus(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"Discord returned retryable status {status_code}")
        self.status_code = status_code


class DiscordWebhook:
    """Posts embeds to one webhook, retrying rate limits and server errors."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.webhook_id, self.token = parse_webhook_url(url)
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"hackertracker/{__version__}"})
        self.sleep = sleep or time.sleep

    def verify(self) -> None:
        """Check the webhook exists before starting to deliver."""
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            raise DeliveryError(f"Webhook verification failed ({status})") from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Webhook verification error: {e}") from e

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        if should_retry_http_status(resp.status_code):
            raise _RetryableStatus(resp.status_code)
        return resp

    def deliver(self, embeds: List[Dict[str, Any]]) -> None:
        """Send embeds, split into as many messages as Discord requires.

        Raises:
            DeliveryError: On a rejected request or once retries are exhausted
        """
        post = exponential_backoff(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            exceptions=(
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                _RetryableStatus,
            ),
            on_retry=lambda attempt, exc, delay: logger.warning(
                "Webhook post failed, retrying", attempt=attempt, delay=delay, error=str(exc)
            ),
            sleep=self.sleep,
        )(self._post)

        for start in range(0, len(embeds), MAX_EMBEDS_PER_MESSAGE):
            chunk = embeds[start:start + MAX_EMBEDS_PER_MESSAGE]
            try:
                resp = post({"embeds": chunk})
                resp.raise_for_status()
            except RetryError as e:
                raise DeliveryError(f"Webhook delivery failed: {e}") from e
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else "HTTPError"
                raise DeliveryError(f"Webhook rejected message ({status})") from e
            except requests.exceptions.RequestException as e:
                raise DeliveryError(f"Webhook request error: {e}") from e


class LogNotifier:
    """Writes embeds to the log instead of posting them (dry runs)."""

    def verify(self) -> None:
        pass

    def deliver(self, embeds: List[Dict[str, Any]]) -> None:
        for embed in embeds:
            logger.info("Would deliver embed", embed=embed)
