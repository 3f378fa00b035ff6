import json
import logging
from urllib import error, request
from urllib.parse import urlparse

from caresupply.config import get_settings

logger = logging.getLogger(__name__)

_ALLOWED_HTTP_SCHEMES = {"http", "https"}


def build_payload(message, recipient, subject=None, context=None):
    payload = {"to": recipient, "message": message}
    if subject:
        payload["subject"] = subject
    if context:
        payload["context"] = context
    return payload


def validate_webhook_url(webhook_url):
    parsed = urlparse(webhook_url)
    scheme = parsed.scheme.lower()
    if scheme not in _ALLOWED_HTTP_SCHEMES or not parsed.netloc:
        raise RuntimeError("NOTIFICATION_WEBHOOK_URL must be an absolute HTTP(S) URL")
    return webhook_url


def _raise_http_error(exc):
    body = ""
    try:
        body_bytes = exc.read()
        if body_bytes:
            body = body_bytes.decode("utf-8", errors="replace").strip()
    except (OSError, ValueError):
        body = ""

    if body:
        raise RuntimeError(
            "Notification webhook error: HTTP {} {}".format(exc.code, body)
        ) from exc
    raise RuntimeError("Notification webhook error: HTTP {}".format(exc.code)) from exc


def send_notification(message, *, recipient, subject=None, context=None):
    """Deliver a heads-up to an institution.

    Without a configured webhook the message is only logged and False is
    returned; delivery failures raise RuntimeError.
    """
    settings = get_settings()

    if message is None or not str(message).strip():
        raise ValueError("message is required")
    if recipient is None or not str(recipient).strip():
        raise ValueError("recipient is required")
    message = str(message).strip()
    recipient = str(recipient).strip()

    webhook_url = (settings.NOTIFICATION_WEBHOOK_URL or "").strip()
    if not webhook_url:
        logger.info("Notification for %s (no webhook configured): %s", recipient, message)
        return False
    webhook_url = validate_webhook_url(webhook_url)

    headers = {"Content-Type": "application/json"}
    token = (settings.NOTIFICATION_WEBHOOK_TOKEN or "").strip()
    if token:
        headers["Authorization"] = token if token.lower().startswith("bearer ") else "Bearer {}".format(token)

    payload = json.dumps(build_payload(message, recipient, subject, context), default=str).encode("utf-8")
    req = request.Request(webhook_url, data=payload, method="POST", headers=headers)

    try:
        with request.urlopen(req, timeout=15) as response:  # nosec B310
            status_code = response.getcode()
            if status_code < 200 or status_code >= 300:
                raise RuntimeError("Notification webhook error: HTTP {}".format(status_code))
    except error.HTTPError as exc:
        _raise_http_error(exc)
    except error.URLError as exc:
        raise RuntimeError("Notification webhook error: {}".format(exc.reason)) from exc

    logger.info("Notification delivered to %s", recipient)
    return True


__all__ = ["build_payload", "send_notification", "validate_webhook_url"]
