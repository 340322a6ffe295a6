import unittest
from unittest import mock

import requests

from newswire.delivery.sinks import DeliveryError, DiscordChannelSink, LoggingSink, TelegramSink


def _resp(status=200, payload=None):
    r = mock.Mock()
    r.status_code = status
    r.json.return_value = payload if payload is not None else {}
    if status >= 400:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status} Error", response=r)
    else:
        r.raise_for_status.return_value = None
    return r


def _discord(session, **kwargs):
    kwargs.setdefault("retry_attempts", 3)
    return DiscordChannelSink("bot-token", "123456", session=session, retry_delay=0, sleep=lambda s: None, **kwargs)


class TestDiscordChannelSink(unittest.TestCase):
    def test_auth_header(self):
        session = mock.Mock()
        session.headers = {}
        _discord(session)
        self.assertEqual(session.headers["Authorization"], "Bot bot-token")

    def test_resolve_accepts_guild_text_channel(self):
        session = mock.Mock(headers={})
        session.get.return_value = _resp(200, {"id": "123456", "type": 0})
        _discord(session).resolve()
        self.assertTrue(session.get.call_args.args[0].endswith("/channels/123456"))

    def test_resolve_rejects_other_channel_types(self):
        session = mock.Mock(headers={})
        session.get.return_value = _resp(200, {"id": "123456", "type": 2})
        with self.assertRaises(DeliveryError):
            _discord(session).resolve()

    def test_resolve_missing_channel(self):
        session = mock.Mock(headers={})
        session.get.return_value = _resp(404)
        with self.assertRaises(DeliveryError):
            _discord(session).resolve()

    def test_send_posts_content(self):
        session = mock.Mock(headers={})
        session.post.return_value = _resp(200, {"id": "1"})
        _discord(session).send("hello")
        url = session.post.call_args.args[0]
        self.assertTrue(url.endswith("/channels/123456/messages"))
        self.assertEqual(session.post.call_args.kwargs["json"], {"content": "hello"})

    def test_send_retries_then_raises_delivery_error(self):
        session = mock.Mock(headers={})
        session.post.return_value = _resp(500)
        with self.assertRaises(DeliveryError):
            _discord(session).send("hello")
        self.assertEqual(session.post.call_count, 3)

    def test_send_recovers_after_transient_error(self):
        session = mock.Mock(headers={})
        session.post.side_effect = [_resp(502), _resp(200, {"id": "1"})]
        _discord(session).send("hello")
        self.assertEqual(session.post.call_count, 2)

    def test_oversized_chunk_rejected(self):
        session = mock.Mock(headers={})
        with self.assertRaises(DeliveryError):
            _discord(session).send("x" * 2001)
        session.post.assert_not_called()

    def test_close_is_idempotent(self):
        session = mock.Mock(headers={})
        sink = _discord(session)
        sink.close()
        sink.close()
        session.close.assert_called_once()


class TestTelegramSink(unittest.TestCase):
    def _sink(self, session):
        return TelegramSink("123:abc", "-100200", session=session, retry_attempts=1, retry_delay=0, sleep=lambda s: None)

    def test_markdown_fallback(self):
        session = mock.Mock()
        session.post.side_effect = [
            _resp(400, {"ok": False, "description": "can't parse entities"}),
            _resp(200, {"ok": True}),
        ]
        sink = self._sink(session)
        self.assertEqual(sink.max_message_length, 4096)
        sink.send("*broken markdown")

        first, second = session.post.call_args_list
        self.assertTrue(first.args[0].endswith("/bot123:abc/sendMessage"))
        self.assertEqual(first.kwargs["json"]["parse_mode"], "Markdown")
        self.assertNotIn("parse_mode", second.kwargs["json"])

    def test_resolve_unknown_chat(self):
        session = mock.Mock()
        session.get.return_value = _resp(400, {"ok": False, "description": "chat not found"})
        with self.assertRaises(DeliveryError):
            self._sink(session).resolve()


class TestLoggingSink(unittest.TestCase):
    def test_logs_chunk(self):
        sink = LoggingSink(session=mock.Mock())
        with self.assertLogs("newswire.delivery.sinks", level="INFO") as logs:
            sink.send("digest body")
        self.assertTrue(any("digest body" in line for line in logs.output))


if __name__ == "__main__":
    unittest.main()
