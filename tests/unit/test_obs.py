import json
import logging

from pinchat.obs.logging import JSONLogFormatter, bind_context, reset_context
from pinchat.settings import Settings


def _record(**extra):
    record = logging.LogRecord("pinchat.test", logging.INFO, __file__, 1, "Message sent", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_redacts_message_bodies_and_carries_context():
    tokens = bind_context(user_id="resp-1", thread_id="post-1_resp-1")
    try:
        line = JSONLogFormatter().format(_record(content="secret words", sender_email="a@b.c", role="responder"))
    finally:
        reset_context(tokens)

    payload = json.loads(line)
    assert payload["msg"] == "Message sent"
    assert payload["user_id"] == "resp-1"
    assert payload["thread_id"] == "post-1_resp-1"
    assert payload["content"] == "[redacted]"
    assert payload["sender_email"] == "[redacted]"
    assert payload["role"] == "responder"


def test_context_is_reset():
    tokens = bind_context(user_id="owner-1")
    reset_context(tokens)
    payload = json.loads(JSONLogFormatter().format(_record()))
    assert "user_id" not in payload


def test_admin_uids_accept_csv_and_json(monkeypatch):
    monkeypatch.setenv("ADMIN_UIDS", "a, b,,c")
    assert Settings().admin_uids == ("a", "b", "c")
    monkeypatch.setenv("ADMIN_UIDS", '["x", "y"]')
    assert Settings().admin_uids == ("x", "y")
    monkeypatch.setenv("ADMIN_UIDS", "")
    assert Settings().admin_uids == ()


def test_obs_init_is_idempotent_and_respects_switch(monkeypatch):
    from pinchat import obs
    from pinchat.settings import settings

    calls = []
    monkeypatch.setattr(obs.obs_logging, "configure_logging", lambda: calls.append(1))
    monkeypatch.setattr(obs, "_initialised", False)

    monkeypatch.setattr(settings, "obs_enabled", False)
    obs.init()
    assert calls == []

    monkeypatch.setattr(settings, "obs_enabled", True)
    obs.init()
    obs.init()
    assert calls == [1]
