"""Push delivery provider - HTTP push gateway client (httpx).

Wire contract (JSON):
    POST <PUSH_GATEWAY_URL>
    {"tokens": [...], "notification": {"title", "body"}, "data": {...},
     "android": {...}, "apns": {...}}
    -> 200 {"responses": [{"success": true} | {"success": false,
                           "error": {"code": "...", "message": "..."}}]}

`responses` is aligned index-for-index with `tokens`.
"""

import logging
from typing import Any, Protocol

import httpx

from config.settings import settings
from src.vd_common.errors import UpstreamUnavailableError
from src.vd_notify.domain.models import PushMessage, TokenSendResult

logger = logging.getLogger(__name__)

_ANDROID_OPTIONS = {
    "priority": "high",
    "notification": {"sound": "default", "channelId": "orders", "priority": "high"},
}
_APNS_OPTIONS = {"payload": {"aps": {"sound": "default", "badge": 1}}}


class PushProviderProtocol(Protocol):
    @property
    def configured(self) -> bool: ...

    async def send_multicast(
        self, tokens: list[str], message: PushMessage
    ) -> list[TokenSendResult]:
        """One result per token, in token order."""
        ...


def build_gateway_request(tokens: list[str], message: PushMessage) -> dict[str, Any]:
    return {
        "tokens": tokens,
        "notification": {"title": message.title, "body": message.body},
        "data": {**message.data, "clickAction": "FLUTTER_NOTIFICATION_CLICK"},
        "android": _ANDROID_OPTIONS,
        "apns": _APNS_OPTIONS,
    }


class HttpPushGateway:
    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url if url is not None else settings.PUSH_GATEWAY_URL
        self._api_key = api_key if api_key is not None else settings.PUSH_GATEWAY_API_KEY
        self._timeout = timeout_seconds or settings.PUSH_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._url)

    async def send_multicast(
        self, tokens: list[str], message: PushMessage
    ) -> list[TokenSendResult]:
        if not self._url:
            raise UpstreamUnavailableError("push", "push gateway not configured")

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._url, json=build_gateway_request(tokens, message), headers=headers
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamUnavailableError(
                "push", f"gateway returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailableError("push", str(exc) or type(exc).__name__) from exc

        return _parse_responses(tokens, body)


def _parse_responses(tokens: list[str], body: Any) -> list[TokenSendResult]:
    responses = body.get("responses") if isinstance(body, dict) else None
    if not isinstance(responses, list) or len(responses) != len(tokens):
        raise UpstreamUnavailableError("push", "gateway response does not match token list")

    results: list[TokenSendResult] = []
    for token, item in zip(tokens, responses, strict=True):
        if item.get("success"):
            results.append(TokenSendResult(token=token, success=True))
            continue
        error = item.get("error") or {}
        results.append(
            TokenSendResult(
                token=token,
                success=False,
                error_code=error.get("code"),
                error_message=error.get("message"),
            )
        )
    return results
