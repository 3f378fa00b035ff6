import json
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from caresupply.services import notification_service
from caresupply.services.notification_service import build_payload, send_notification, validate_webhook_url


def _settings(url="https://hooks.example.com/notify", token=None):
    return SimpleNamespace(NOTIFICATION_WEBHOOK_URL=url, NOTIFICATION_WEBHOOK_TOKEN=token)


class NotificationServiceTest(unittest.TestCase):
    def test_payload_includes_optional_fields_only_when_set(self):
        payload = build_payload("Hello", "Sunrise Care")
        self.assertEqual(payload, {"to": "Sunrise Care", "message": "Hello"})

        payload = build_payload("Hello", "Sunrise Care", "Subject", {"execution_id": 4})
        self.assertEqual(payload["subject"], "Subject")
        self.assertEqual(payload["context"], {"execution_id": 4})

    def test_webhook_url_must_be_absolute_http(self):
        self.assertEqual(validate_webhook_url("https://a.example.com/x"), "https://a.example.com/x")
        for url in ("ftp://a.example.com", "/relative/path", "https://"):
            with self.assertRaises(RuntimeError):
                validate_webhook_url(url)

    def test_without_webhook_message_is_only_logged(self):
        with patch.object(notification_service, "get_settings", return_value=_settings(url="")):
            with patch.object(notification_service.request, "urlopen") as urlopen:
                self.assertFalse(send_notification("Hello", recipient="Sunrise Care"))
        urlopen.assert_not_called()

    def test_blank_message_or_recipient_rejected(self):
        with self.assertRaises(ValueError):
            send_notification("  ", recipient="Sunrise Care")
        with self.assertRaises(ValueError):
            send_notification("Hello", recipient="")

    def test_posts_json_with_bearer_token(self):
        response = MagicMock()
        response.getcode.return_value = 200
        response.__enter__.return_value = response

        with patch.object(notification_service, "get_settings", return_value=_settings(token="secret")):
            with patch.object(notification_service.request, "urlopen", return_value=response) as urlopen:
                self.assertTrue(
                    send_notification("Hello", recipient="Sunrise Care", context={"template_id": 3})
                )

        req = urlopen.call_args[0][0]
        self.assertEqual(req.get_method(), "POST")
        self.assertEqual(req.get_header("Authorization"), "Bearer secret")
        body = json.loads(req.data.decode("utf-8"))
        self.assertEqual(body["to"], "Sunrise Care")
        self.assertEqual(body["context"], {"template_id": 3})

    def test_non_success_status_raises(self):
        response = MagicMock()
        response.getcode.return_value = 500
        response.__enter__.return_value = response

        with patch.object(notification_service, "get_settings", return_value=_settings()):
            with patch.object(notification_service.request, "urlopen", return_value=response):
                with self.assertRaises(RuntimeError):
                    send_notification("Hello", recipient="Sunrise Care")


if __name__ == "__main__":
    unittest.main()
