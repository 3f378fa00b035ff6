import json
import logging
import unittest

from caresupply.core.logging import ContextFormatter, JsonFormatter


def _record(message, **extra):
    record = logging.LogRecord("caresupply.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class LoggingTest(unittest.TestCase):
    def test_json_formatter_includes_context_ids(self):
        line = JsonFormatter().format(_record("fulfilled", template_id=3, execution_id=7))
        payload = json.loads(line)
        self.assertEqual(payload["message"], "fulfilled")
        self.assertEqual(payload["template_id"], 3)
        self.assertEqual(payload["execution_id"], 7)
        self.assertNotIn("order_id", payload)

    def test_text_formatter_appends_context(self):
        formatter = ContextFormatter(fmt="%(levelname)s %(message)s")
        self.assertEqual(formatter.format(_record("skipped", template_id=3)), "INFO skipped [template_id=3]")
        self.assertEqual(formatter.format(_record("plain")), "INFO plain")


if __name__ == "__main__":
    unittest.main()
