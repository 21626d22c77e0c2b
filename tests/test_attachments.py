from types import SimpleNamespace

from localchat.domain.chat_models import Attachment
from localchat.services.attachments import ATTACHMENT_NAME_LIMIT, sanitize_attachments


def test_drops_items_without_string_content():
    raw = [
        {"name": "ok", "content": "hello"},
        {"name": "number", "content": 42},
        {"name": "missing"},
        None,
        "just a string",
    ]
    out = sanitize_attachments(raw)
    assert [a.name for a in out] == ["ok"]


def test_caps_count_and_content_length():
    raw = [{"name": f"f{i}", "content": "x" * 50} for i in range(25)]
    out = sanitize_attachments(raw, max_attachments=10, char_limit=20)
    assert len(out) == 10
    assert all(len(a.content) <= 20 for a in out)


def test_defaults_name_type_and_id():
    long_name = "n" * 500
    out = sanitize_attachments(
        [
            {"content": "a"},
            {"name": long_name, "content": "b", "type": "file"},
            {"name": "c", "content": "c", "type": "image/png", "id": "keep-me"},
        ]
    )
    assert out[0].name == "Attachment"
    assert out[0].type == "text"
    assert out[0].id
    assert len(out[1].name) == ATTACHMENT_NAME_LIMIT
    assert out[1].type == "file"
    assert out[2].type == "text"
    assert out[2].id == "keep-me"


def test_accepts_objects_and_rejects_non_lists():
    out = sanitize_attachments([SimpleNamespace(id="x", name="obj", type="file", content="body")])
    assert out == [Attachment(id="x", name="obj", type="file", content="body")]
    assert sanitize_attachments(None) == []
    assert sanitize_attachments("content") == []
    assert sanitize_attachments({"content": "x"}) == []


def test_sanitizing_twice_is_a_no_op():
    raw = [{"name": "n" * 300, "content": "z" * 300, "type": "weird"} for _ in range(12)]
    once = sanitize_attachments(raw, max_attachments=10, char_limit=100)
    twice = sanitize_attachments(once, max_attachments=10, char_limit=100)
    assert twice == once
