from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import OpError, ProviderApiError, ProviderUnreachable


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HttpTransport:
    """Blocking HTTP(S) client handed to provider adapters."""

    def __init__(self, *, timeout_seconds: int = 30) -> None:
        self.timeout_seconds = timeout_seconds

    def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None = None,
    ) -> HttpResponse:
        req = Request(url, data=body, method=str(method).upper())
        for k, v in headers.items():
            req.add_header(k, v)
        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                status = getattr(resp, "status", 200)
                hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
                data = resp.read()
                return HttpResponse(status=int(status), headers=hdrs, body=data)
        except HTTPError as e:
            hdrs = {k.lower(): v for k, v in dict(e.headers or {}).items()}
            data = e.read() if hasattr(e, "read") else b""
            return HttpResponse(status=int(getattr(e, "code", 0) or 0), headers=hdrs, body=data)
        except (URLError, TimeoutError) as e:
            raise ProviderUnreachable(f"http {str(method).upper()} {url} failed: {e}") from e


def api_error_message(resp: HttpResponse) -> str:
    text = resp.text()
    try:
        parsed = json.loads(text)
    except ValueError:
        return text.strip() or f"http {resp.status}"
    if isinstance(parsed, dict):
        msg = str(parsed.get("message") or "").strip()
        if msg:
            return msg
    return text.strip() or f"http {resp.status}"


def check_response(resp: HttpResponse, *, label: str) -> HttpResponse:
    if resp.ok:
        return resp
    raise ProviderApiError(status=resp.status, message=api_error_message(resp), label=label)


def json_object(resp: HttpResponse, *, label: str) -> dict[str, Any]:
    text = resp.text()
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except ValueError as e:
        raise OpError(f"invalid JSON from {label}: {e}") from e
    if not isinstance(parsed, dict):
        raise OpError(f"invalid JSON from {label}: expected object")
    return parsed
