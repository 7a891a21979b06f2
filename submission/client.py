"""
Submission Client

Performs one bounded HTTPS POST of a built payload. Never retries and
never raises for network failures: every failure becomes a transient
outcome for the scheduler to act on.
"""

from __future__ import annotations

import json
import ssl
from contextlib import closing
from http.client import HTTPException
from typing import Any, Callable, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from core.config import DEFAULT_ENDPOINT_URL
from core.logger import get_logger
from submission.models import SubmissionOutcome
from submission.payload import encode_payload

DEFAULT_TIMEOUT_MS = 15000

Opener = Callable[..., Any]

_ssl_context: Optional[ssl.SSLContext] = None


def default_opener(request: Request, timeout: float) -> Any:
    """Open ``request`` over a verified TLS context."""
    global _ssl_context
    if _ssl_context is None:
        _ssl_context = ssl.create_default_context()
    return urlopen(request, timeout=timeout, context=_ssl_context)  # nosec B310 - fixed https endpoint


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    return isinstance(exc, URLError) and isinstance(exc.reason, TimeoutError)


class SubmissionClient:
    """Posts payloads to the collection endpoint."""

    def __init__(
        self,
        endpoint_url: str = DEFAULT_ENDPOINT_URL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        opener: Optional[Opener] = None,
    ):
        self._endpoint_url = endpoint_url
        self._timeout = timeout_ms / 1000.0
        self._opener = opener or default_opener
        self._logger = get_logger("crowdsubmit.client", endpoint=endpoint_url)

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    @property
    def timeout(self) -> float:
        """Connect and read timeout in seconds."""
        return self._timeout

    def _build_request(self, body: bytes) -> Request:
        return Request(
            self._endpoint_url,
            data=body,
            headers={
                "Accept": "application/json",
                "Content-type": "application/json",
            },
            method="POST",
        )

    def submit(self, payload: Mapping[str, Any]) -> SubmissionOutcome:
        """
        Send one payload.

        Args:
            payload: Flat JSON-serializable payload

        Returns:
            ``success`` on HTTP 200, ``transient`` on any other status or
            transport error
        """
        request = self._build_request(encode_payload(payload))

        try:
            response = self._opener(request, timeout=self._timeout)
            with closing(response):
                code = response.status
                if code != 200:
                    self._logger.warning("submit_rejected", status=code)
                    return SubmissionOutcome.transient(f"HTTP {code}")

                self._drain(response)
                return SubmissionOutcome.success()

        except HTTPError as e:
            # The error doubles as the response; release it.
            e.close()
            self._logger.warning("submit_rejected", status=e.code)
            return SubmissionOutcome.transient(f"HTTP {e.code}")

        except (URLError, OSError, HTTPException, ValueError) as e:
            if _is_timeout(e):
                self._logger.warning("submit_timeout", timeout=self._timeout, exc_info=True)
                return SubmissionOutcome.transient("timeout")

            self._logger.error(
                "submit_failed",
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return SubmissionOutcome.transient(f"{type(e).__name__}: {e}")

    def _log_response(self, body: bytes) -> None:
        text = body.decode("utf-8", errors="replace")
        try:
            parsed: Any = json.loads(text) if text else None
        except ValueError:
            parsed = None
        self._logger.info("submit_response", response=text, parsed=parsed is not None)

    def _drain(self, response: Any) -> None:
        # The status line already decided the outcome; the body is diagnostics only.
        try:
            body = response.read()
        except (OSError, HTTPException, ValueError) as e:
            self._logger.warning(
                "submit_response_unreadable",
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return
        self._log_response(body)
