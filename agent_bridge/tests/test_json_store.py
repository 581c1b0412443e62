import json
import tempfile
from pathlib import Path

import pytest

from agent_bridge.agents.tool_loop import MAX_HISTORY
from agent_bridge.domain.exceptions import ValidationError
from agent_bridge.domain.models import ChatMessage
from agent_bridge.domain.session import Session
from agent_bridge.infrastructure.storage.json_store import JsonSessionStore
from agent_bridge.tools.definitions import ToolCall


def test_session_store_save_and_load():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=d)
        session = Session(
            messages=[
                ChatMessage(role="user", content="hi"),
                ChatMessage(
                    role="assistant",
                    content=None,
                    tool_calls=[ToolCall(id="c1", name="read_file", arguments='{"path": "a.txt"}')],
                ),
                ChatMessage(role="tool", content="hello", tool_call_id="c1"),
            ]
        )
        store.save("main", "local-1-abcdef", session)

        path = Path(d) / "sessions" / "main" / "local-1-abcdef.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["updatedAt"].endswith("Z")
        assert data["messages"][1]["tool_calls"][0]["function"]["name"] == "read_file"
        assert not list(path.parent.glob("*.tmp"))

        loaded = store.load("main", "local-1-abcdef")
        assert [m.role for m in loaded.messages] == ["user", "assistant", "tool"]
        assert loaded.messages[1].tool_calls[0].arguments == '{"path": "a.txt"}'
        assert loaded.messages[2].tool_call_id == "c1"


def test_session_store_missing_and_corrupt():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=d)
        assert store.load("main", "nope") is None
        bad = Path(d) / "sessions" / "main" / "broken.json"
        bad.parent.mkdir(parents=True)
        bad.write_text("{not json", encoding="utf-8")
        assert store.load("main", "broken") is None
        backups = list(bad.parent.glob("broken.json.corrupt-*"))
        assert len(backups) == 1
        assert backups[0].read_text(encoding="utf-8") == "{not json"
        assert not bad.exists()


def test_session_store_rejects_unsafe_ids():
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=d)
        with pytest.raises(ValidationError):
            store.load("main", "../escape")
        with pytest.raises(ValidationError):
            store.save("../main", "s1", Session())


def test_new_session_id_format():
    store = JsonSessionStore(root=".")
    sid = store.new_session_id()
    prefix, ms, suffix = sid.split("-")
    assert prefix == "local"
    assert ms.isdigit()
    assert len(suffix) == 6
    assert sid != store.new_session_id()


@pytest.mark.parametrize("count", [5, 45])
def test_history_window_keeps_full_history_on_disk(count):
    with tempfile.TemporaryDirectory() as d:
        store = JsonSessionStore(root=d)
        messages = [ChatMessage(role="user", content=f"m{i}") for i in range(count)]
        store.save("g1", "s1", Session(messages=messages))

        loaded = store.load("g1", "s1")
        assert len(loaded.messages) == count
        window = loaded.messages[-MAX_HISTORY:]
        assert len(window) == min(count, MAX_HISTORY)
        assert window[-1].content == f"m{count - 1}"
