"""
FCM Push Service — Firebase Cloud Messaging HTTP v1 delivery.

Sends one message per device token to the FCM v1 send endpoint and
classifies each outcome:
- 2xx: delivered
- permanent provider error (unregistered / invalid registration):
  the token is reported for pruning
- anything else: counted as a failure and logged, never pruned

Tokens are sent in batches no larger than the provider's multicast
limit, with a bounded number of requests in flight. Every outcome stays
attributed to its own token, so one failed (or crashed) send never
affects another.
"""

import asyncio
import logging
import time
from typing import Any, Iterator, Optional, Sequence

import httpx

from ticket_push.core.config import (
    FCM_BATCH_SIZE,
    FCM_REQUEST_TIMEOUT,
    FCM_SEND_CONCURRENCY,
)
from ticket_push.models.push import (
    DispatchResult,
    ProviderError,
    ProviderErrorKind,
    SendOutcome,
)
from ticket_push.models.tickets import DeviceToken, Platform

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

# Provider codes meaning the registration is gone for good. Covers the
# v1 API, the legacy HTTP API and the Admin SDK spellings.
PERMANENT_ERROR_CODES = frozenset({
    "UNREGISTERED",
    "NotRegistered",
    "InvalidRegistration",
    "messaging/registration-token-not-registered",
    "messaging/invalid-registration-token",
})

FCM_ERROR_TYPE = "type.googleapis.com/google.firebase.fcm.v1.FcmError"
BAD_REQUEST_TYPE = "type.googleapis.com/google.rpc.BadRequest"


# ===================================================================
# Message Builder
# ===================================================================

def build_message(
    device: DeviceToken,
    title: str,
    body: str,
    data: dict[str, Any],
) -> dict:
    """
    Build the FCM v1 message envelope for one device.

    FCM requires every data value to be a string. Delivery hints are
    added for the device's platform:
    - android: high priority
    - ios: immediate APNs priority (10) with the default sound
    - web: high urgency

    Returns:
        dict: ``{"message": {...}}`` ready for JSON serialization.
    """
    message: dict[str, Any] = {
        "token": device.token,
        "notification": {
            "title": title,
            "body": body,
        },
        "data": {key: str(value) for key, value in data.items() if value is not None},
    }

    if device.platform == Platform.ANDROID:
        message["android"] = {
            "priority": "high",
            "notification": {"sound": "default"},
        }
    elif device.platform == Platform.IOS:
        message["apns"] = {
            "headers": {"apns-priority": "10"},
            "payload": {"aps": {"sound": "default"}},
        }
    elif device.platform == Platform.WEB:
        message["webpush"] = {"headers": {"Urgency": "high"}}

    return {"message": message}


# ===================================================================
# Error Classification
# ===================================================================

def _names_registration_token(error: dict) -> bool:
    """True if an INVALID_ARGUMENT error is about the target token itself."""
    for detail in error.get("details") or []:
        if not isinstance(detail, dict) or detail.get("@type") != BAD_REQUEST_TYPE:
            continue
        for violation in detail.get("fieldViolations") or []:
            if violation.get("field") == "message.token":
                return True
    return "registration token" in str(error.get("message", "")).lower()


def classify_provider_error(
    status_code: int,
    payload: Any,
    text: str = "",
) -> ProviderError:
    """
    Classify a non-2xx FCM response.

    Args:
        status_code: HTTP status of the send.
        payload: Decoded JSON body, or None if it could not be decoded.
        text: Raw body, used as the message when nothing better exists.

    Returns:
        ProviderError tagged PERMANENT, TRANSIENT or UNKNOWN.
    """
    if not isinstance(payload, dict) or "error" not in payload:
        return ProviderError(
            kind=ProviderErrorKind.UNKNOWN,
            status_code=status_code,
            message=text or f"HTTP {status_code}",
        )

    error = payload["error"]

    # Legacy API / Admin SDK shape: {"error": "NotRegistered"}
    if isinstance(error, str):
        kind = (
            ProviderErrorKind.PERMANENT
            if error in PERMANENT_ERROR_CODES
            else ProviderErrorKind.TRANSIENT
        )
        return ProviderError(kind=kind, code=error, status_code=status_code, message=error)

    if not isinstance(error, dict):
        return ProviderError(
            kind=ProviderErrorKind.UNKNOWN,
            status_code=status_code,
            message=text or f"HTTP {status_code}",
        )

    code = None
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("@type") == FCM_ERROR_TYPE:
            code = detail.get("errorCode")
            break
    code = code or error.get("status")
    message = str(error.get("message", ""))

    if code is None:
        return ProviderError(
            kind=ProviderErrorKind.UNKNOWN,
            status_code=status_code,
            message=message or text,
        )

    if code in PERMANENT_ERROR_CODES:
        kind = ProviderErrorKind.PERMANENT
    elif code == "INVALID_ARGUMENT" and _names_registration_token(error):
        kind = ProviderErrorKind.PERMANENT
    else:
        kind = ProviderErrorKind.TRANSIENT

    return ProviderError(kind=kind, code=code, status_code=status_code, message=message)


# ===================================================================
# Dispatcher
# ===================================================================

def _batched(tokens: Sequence[DeviceToken], size: int) -> Iterator[Sequence[DeviceToken]]:
    for i in range(0, len(tokens), size):
        yield tokens[i:i + size]


def _deadline_outcome(device: DeviceToken) -> SendOutcome:
    return SendOutcome(
        token=device.token,
        success=False,
        error=ProviderError(
            kind=ProviderErrorKind.TRANSIENT,
            code="deadline_exceeded",
            message="Dispatch deadline reached before the send completed",
        ),
    )


class MessageDispatcher:
    """Delivers messages to FCM, one authenticated POST per device token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        project_id: str,
        *,
        batch_size: int = FCM_BATCH_SIZE,
        max_concurrency: int = FCM_SEND_CONCURRENCY,
        request_timeout: float = FCM_REQUEST_TIMEOUT,
    ):
        if batch_size < 1 or max_concurrency < 1:
            raise ValueError("batch_size and max_concurrency must be positive")
        self._http = http_client
        self.send_url = FCM_SEND_URL.format(project_id=project_id)
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.request_timeout = request_timeout

    async def _send_one(
        self,
        access_token: str,
        device: DeviceToken,
        title: str,
        body: str,
        data: dict[str, Any],
        semaphore: asyncio.Semaphore,
    ) -> SendOutcome:
        payload = build_message(device, title, body, data)

        async with semaphore:
            try:
                response = await self._http.post(
                    self.send_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {access_token}"},
                    timeout=self.request_timeout,
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "FCM request failed for device %s...: %s", device.token[:16], exc,
                )
                return SendOutcome(
                    token=device.token,
                    success=False,
                    error=ProviderError(
                        kind=ProviderErrorKind.TRANSIENT,
                        code="network_error",
                        message=str(exc),
                    ),
                )

        if 200 <= response.status_code < 300:
            logger.debug("FCM delivered to device %s...", device.token[:16])
            return SendOutcome(token=device.token, success=True)

        try:
            error_body = response.json()
        except ValueError:
            error_body = None
        error = classify_provider_error(response.status_code, error_body, response.text)

        logger.warning(
            "FCM delivery failed: status=%d, code=%s, kind=%s, device=%s...",
            response.status_code,
            error.code,
            error.kind.value,
            device.token[:16],
        )
        return SendOutcome(token=device.token, success=False, error=error)

    async def send(
        self,
        access_token: str,
        tokens: Sequence[DeviceToken],
        title: str,
        body: str,
        data: dict[str, Any],
        deadline: Optional[float] = None,
    ) -> DispatchResult:
        """
        Send the notification to every device in ``tokens``.

        Args:
            access_token: OAuth2 bearer token from the CredentialMinter.
            tokens: Devices to deliver to.
            title: Notification title.
            body: Notification body.
            data: Application data payload (values are stringified).
            deadline: Optional ``time.monotonic()`` value. Sends still in
                flight when it passes are cancelled and counted as
                transient failures.

        Returns:
            DispatchResult with ``success + failure == len(tokens)``.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes: list[SendOutcome] = []
        deadline_exceeded = False

        for batch in _batched(tokens, self.batch_size):
            if deadline_exceeded:
                outcomes.extend(_deadline_outcome(device) for device in batch)
                continue

            timeout = None
            if deadline is not None:
                timeout = deadline - time.monotonic()
                if timeout <= 0:
                    deadline_exceeded = True
                    outcomes.extend(_deadline_outcome(device) for device in batch)
                    continue

            tasks = [
                asyncio.create_task(
                    self._send_one(access_token, device, title, body, data, semaphore)
                )
                for device in batch
            ]
            done, pending = await asyncio.wait(tasks, timeout=timeout)

            if pending:
                deadline_exceeded = True
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            for device, task in zip(batch, tasks):
                if task not in done:
                    outcomes.append(_deadline_outcome(device))
                elif task.exception() is not None:
                    exc = task.exception()
                    logger.error(
                        "Unexpected error sending to device %s...: %r", device.token[:16], exc,
                    )
                    outcomes.append(SendOutcome(
                        token=device.token,
                        success=False,
                        error=ProviderError(
                            kind=ProviderErrorKind.UNKNOWN,
                            code="send_error",
                            message=repr(exc),
                        ),
                    ))
                else:
                    outcomes.append(task.result())

        result = DispatchResult.from_outcomes(outcomes, deadline_exceeded=deadline_exceeded)

        if deadline_exceeded:
            logger.warning(
                "Dispatch deadline exceeded: %d/%d sends completed",
                sum(1 for o in outcomes if not (o.error and o.error.code == "deadline_exceeded")),
                len(outcomes),
            )
        logger.info(
            "FCM send complete: attempted=%d, success=%d, failure=%d, invalid=%d",
            result.attempted,
            result.success,
            result.failure,
            len(result.invalid_tokens),
        )
        return result
