"""
Minimal JSON-over-HTTP helper used by registry, deploy and verification drivers.

Failures are classified for the orchestrator: connection problems, timeouts,
HTTP 408/429 and 5xx are transient; any other HTTP error is a rejection.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any

from apps.orchestration.errors import PermanentAdapterError, TransientAdapterError

logger = logging.getLogger(__name__)

USER_AGENT = "DeployOrchestrator/1.0"

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass
class HttpResponse:
    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        try:
            return json.loads(self.body) if self.body else None
        except json.JSONDecodeError:
            raise PermanentAdapterError(f"Expected JSON response, got: {self.body[:200]}")

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


def request(
    url: str,
    *,
    method: str = "GET",
    payload: Any = None,
    data: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = 30.0,
    allow_statuses: tuple[int, ...] = (),
) -> HttpResponse:
    """
    Perform an HTTP request.

    Args:
        payload: JSON-serializable body (sets Content-Type: application/json).
        data: Raw body bytes (used instead of payload).
        allow_statuses: Non-2xx statuses returned to the caller instead of raised.

    Raises:
        TransientAdapterError / PermanentAdapterError as described above.
    """
    request_headers = {"User-Agent": USER_AGENT}
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
        request_headers["Content-Type"] = "application/json"
    request_headers.update(headers or {})

    req = urllib.request.Request(url, data=data, headers=request_headers, method=method.upper())

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return HttpResponse(
                status=response.getcode(),
                body=response.read().decode("utf-8"),
                headers={k.lower(): v for k, v in response.headers.items()},
            )
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace") if e.fp else ""
        if e.code in allow_statuses:
            return HttpResponse(
                status=e.code,
                body=body,
                headers={k.lower(): v for k, v in (e.headers or {}).items()},
            )
        message = f"HTTP {e.code} from {method.upper()} {url}: {body[:300]}"
        if e.code in TRANSIENT_STATUS_CODES:
            raise TransientAdapterError(message)
        raise PermanentAdapterError(message)
    except urllib.error.URLError as e:
        raise TransientAdapterError(f"Cannot reach {url}: {e.reason}")
    except TimeoutError:
        raise TransientAdapterError(f"Timed out after {timeout}s calling {url}")
