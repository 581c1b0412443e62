import json
import tempfile
from pathlib import Path

from agent_bridge.auth.registry import ResourceRegistry
from agent_bridge.config.settings import Settings
from agent_bridge.dispatch import (
    ActionOutcome,
    DispatcherChain,
    HostContext,
    MailboxWatcher,
    default_chain,
)
from agent_bridge.domain.ipc import IpcRequest
from agent_bridge.infrastructure.mailbox.transport import enqueue, messages_dir, results_dir, tasks_dir

MAPPINGS = """
- {externalId: chan-g, ownerGroup: team-g}
- {externalId: chat-g, ownerGroup: team-g}
- {externalId: chat-main, ownerGroup: main, isPrivileged: true}
"""


class FakeChannel:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_text(self, channel_id, text):
        if self.fail:
            raise RuntimeError("upstream 502")
        self.sent.append((channel_id, text))
        return ActionOutcome(success=True, message=f"Sent to {channel_id}")


class FakeChat:
    def __init__(self):
        self.sent = []

    def send_message(self, chat_jid, text):
        self.sent.append((chat_jid, text))
        return ActionOutcome(success=True, message="delivered")


class FakeScheduler:
    def __init__(self):
        self.created = []
        self.actions = []

    def create_task(self, spec):
        self.created.append(spec)
        return ActionOutcome(success=True, message="task-1 created")

    def pause_task(self, task_id, source_group, is_privileged):
        self.actions.append(("pause", task_id, source_group, is_privileged))
        return ActionOutcome(success=True, message=f"{task_id} paused")

    def resume_task(self, task_id, source_group, is_privileged):
        self.actions.append(("resume", task_id, source_group, is_privileged))
        return ActionOutcome(success=True, message=f"{task_id} resumed")

    def cancel_task(self, task_id, source_group, is_privileged):
        self.actions.append(("cancel", task_id, source_group, is_privileged))
        return ActionOutcome(success=True, message=f"{task_id} cancelled")


class FakeRegistrar:
    def __init__(self, registry_path):
        self._path = registry_path

    def register_group(self, jid, name, folder, trigger=None):
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(f"- {{externalId: '{jid}', ownerGroup: {folder}}}\n")
        return ActionOutcome(success=True, message=f"{name} registered")


class FakePlatform:
    def __init__(self):
        self.posts = []

    def post(self, content):
        self.posts.append(content)
        return ActionOutcome(success=True, message="posted")


def _context(d, mappings=MAPPINGS, **clients):
    reg_path = Path(d) / "mappings.yaml"
    reg_path.write_text(mappings, encoding="utf-8")
    settings = Settings(data_dir=str(Path(d) / "data"), registry_file=str(reg_path), main_group_folder="main")
    return HostContext(settings=settings, registry=ResourceRegistry(reg_path), **clients)


def _read_result(d, group, request_id):
    path = results_dir(Path(d) / "data", group) / f"{request_id}.json"
    return json.loads(path.read_text(encoding="utf-8"))


def test_channel_send_authorized_owner_writes_result():
    with tempfile.TemporaryDirectory() as d:
        channel = FakeChannel()
        ctx = _context(d, channel_client=channel)
        chain = default_chain(ctx)
        req = IpcRequest(type="channel_send", request_id="r1", source_group="team-g", payload={"channelId": "chan-g", "text": "hi"})
        assert chain.dispatch(req, Path(d) / "data")
        assert channel.sent == [("chan-g", "hi")]
        assert _read_result(d, "team-g", "r1") == {"success": True, "message": "Sent to chan-g"}


def test_channel_send_other_group_denied():
    with tempfile.TemporaryDirectory() as d:
        channel = FakeChannel()
        ctx = _context(d, channel_client=channel)
        req = IpcRequest(type="channel_send", request_id="r2", source_group="team-h", payload={"channelId": "chan-g", "text": "hi"})
        assert default_chain(ctx).dispatch(req, Path(d) / "data")
        assert channel.sent == []
        result = _read_result(d, "team-h", "r2")
        assert result["success"] is False
        assert result["message"] == "Unauthorized: not authorized for this resource"


def test_channel_request_without_request_id_is_dropped():
    with tempfile.TemporaryDirectory() as d:
        channel = FakeChannel()
        ctx = _context(d, channel_client=channel)
        req = IpcRequest(type="channel_send", source_group="team-g", payload={"channelId": "chan-g", "text": "hi"})
        assert default_chain(ctx).dispatch(req, Path(d) / "data") is True
        assert channel.sent == []
        assert not results_dir(Path(d) / "data", "team-g").exists()


def test_external_failure_becomes_failure_result():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d, channel_client=FakeChannel(fail=True))
        req = IpcRequest(type="channel_send", request_id="r3", source_group="main", is_privileged=True, payload={"channelId": "chan-g", "text": "hi"})
        default_chain(ctx).dispatch(req, Path(d) / "data")
        result = _read_result(d, "main", "r3")
        assert result["success"] is False
        assert "upstream 502" in result["message"]


def test_unknown_type_is_not_claimed():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d)
        chain = DispatcherChain([])
        assert chain.dispatch(IpcRequest(type="mystery", request_id="r4"), d) is False
        assert default_chain(ctx).dispatch(IpcRequest(type="mystery", request_id="r4"), d) is False


def test_schedule_and_lifecycle_requests():
    with tempfile.TemporaryDirectory() as d:
        scheduler = FakeScheduler()
        ctx = _context(d, scheduler=scheduler)
        chain = default_chain(ctx)
        data_dir = Path(d) / "data"
        chain.dispatch(
            IpcRequest(
                type="schedule_task",
                source_group="team-g",
                payload={"chatJid": "chat-g", "prompt": "daily report", "schedule_type": "cron", "schedule_value": "0 9 * * *"},
            ),
            data_dir,
        )
        chain.dispatch(IpcRequest(type="pause_task", request_id="r5", source_group="team-g", payload={"taskId": "task-1"}), data_dir)
        assert scheduler.created[0]["group_folder"] == "team-g"
        assert scheduler.created[0]["context_mode"] == "group"
        assert scheduler.actions == [("pause", "task-1", "team-g", False)]
        assert _read_result(d, "team-g", "r5") == {"success": True, "message": "task-1 paused"}


def test_schedule_rejects_unknown_schedule_type():
    with tempfile.TemporaryDirectory() as d:
        scheduler = FakeScheduler()
        ctx = _context(d, scheduler=scheduler)
        req = IpcRequest(
            type="schedule_task",
            request_id="r6",
            source_group="team-g",
            payload={"chatJid": "chat-g", "prompt": "x", "schedule_type": "weekly", "schedule_value": "1"},
        )
        default_chain(ctx).dispatch(req, Path(d) / "data")
        assert scheduler.created == []
        assert _read_result(d, "team-g", "r6")["message"] == "Unsupported schedule_type: weekly"


def test_admin_actions_require_privilege():
    with tempfile.TemporaryDirectory() as d:
        platform = FakePlatform()
        ctx = _context(d, platform_client=platform)
        req = IpcRequest(type="platform_post", request_id="r7", source_group="team-g", payload={"content": "hello"})
        default_chain(ctx).dispatch(req, Path(d) / "data")
        assert platform.posts == []
        assert _read_result(d, "team-g", "r7")["success"] is False


def test_register_group_reloads_registry():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d)
        ctx.registrar = FakeRegistrar(ctx.registry.path)
        req = IpcRequest(
            type="register_group",
            source_group="main",
            is_privileged=True,
            payload={"jid": "new@chat", "name": "New", "folder": "new-group"},
        )
        default_chain(ctx).dispatch(req, Path(d) / "data")
        assert ctx.registry.find_by_external_id("new@chat").owner_group == "new-group"


def test_watcher_uses_directory_identity_over_payload_claims():
    with tempfile.TemporaryDirectory() as d:
        channel = FakeChannel()
        ctx = _context(d, channel_client=channel)
        data_dir = ctx.settings.data_path
        enqueue(
            tasks_dir(data_dir, "team-h"),
            "channel_send",
            {"requestId": "r8", "channelId": "chan-g", "text": "hi", "sourceGroup": "team-g", "isPrivileged": True},
        )
        watcher = MailboxWatcher(default_chain(ctx), ctx)
        assert watcher.process_once() == 1
        assert channel.sent == []
        assert list(tasks_dir(data_dir, "team-h").iterdir()) == []
        assert _read_result(d, "team-h", "r8")["success"] is False


def test_watcher_main_group_is_privileged_and_messages_first():
    with tempfile.TemporaryDirectory() as d:
        chat, channel = FakeChat(), FakeChannel()
        ctx = _context(d, chat_sender=chat, channel_client=channel)
        data_dir = ctx.settings.data_path
        enqueue(tasks_dir(data_dir, "main"), "channel_send", {"requestId": "r9", "channelId": "chan-g", "text": "a"})
        enqueue(messages_dir(data_dir, "main"), "message", {"chatJid": "chat-g", "text": "b"})
        watcher = MailboxWatcher(default_chain(ctx), ctx)
        assert watcher.process_once() == 2
        assert chat.sent == [("chat-g", "b")]
        assert channel.sent == [("chan-g", "a")]


def test_watcher_quarantines_unparseable_requests():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d)
        data_dir = ctx.settings.data_path
        inbox = tasks_dir(data_dir, "team-g")
        inbox.mkdir(parents=True)
        (inbox / "bad.json").write_text("{oops", encoding="utf-8")
        (inbox / "pending.json.tmp").write_text("{}", encoding="utf-8")
        watcher = MailboxWatcher(default_chain(ctx), ctx)
        assert watcher.process_once() == 0
        assert (data_dir / "ipc" / "errors" / "team-g-bad.json").exists()
        assert (inbox / "pending.json.tmp").exists()


def test_request_id_with_path_segments_is_dropped():
    with tempfile.TemporaryDirectory() as d:
        channel = FakeChannel()
        ctx = _context(d, channel_client=channel)
        data_dir = ctx.settings.data_path
        results_dir(data_dir, "victim").mkdir(parents=True)
        enqueue(
            tasks_dir(data_dir, "team-g"),
            "channel_send",
            {"requestId": "../../victim/results/1700000000000-abcdef", "channelId": "chan-g", "text": "hi"},
        )
        watcher = MailboxWatcher(default_chain(ctx), ctx)
        assert watcher.process_once() == 1
        assert channel.sent == []
        assert list(results_dir(data_dir, "victim").iterdir()) == []
        assert not results_dir(data_dir, "team-g").exists()


def test_fire_and_forget_with_malformed_request_id_writes_no_result():
    with tempfile.TemporaryDirectory() as d:
        chat = FakeChat()
        ctx = _context(d, chat_sender=chat)
        req = IpcRequest(type="message", request_id="../escape", source_group="team-g", payload={"chatJid": "chat-g", "text": "hi"})
        assert default_chain(ctx).dispatch(req, Path(d) / "data")
        assert chat.sent == [("chat-g", "hi")]
        assert not (Path(d) / "data" / "ipc").exists()


def test_failed_result_write_does_not_stop_the_pass():
    with tempfile.TemporaryDirectory() as d:
        chat, channel = FakeChat(), FakeChannel()
        ctx = _context(d, chat_sender=chat, channel_client=channel)
        data_dir = ctx.settings.data_path
        enqueue(tasks_dir(data_dir, "team-g"), "channel_send", {"requestId": "ra", "channelId": "chan-g", "text": "a"})
        enqueue(tasks_dir(data_dir, "team-g"), "channel_send", {"requestId": "rb", "channelId": "chan-g", "text": "b"})
        enqueue(messages_dir(data_dir, "team-h"), "message", {"chatJid": "chat-g", "text": "c"})
        # results 被一个普通文件占住，写回必然失败
        results_dir(data_dir, "team-g").write_text("", encoding="utf-8")
        watcher = MailboxWatcher(default_chain(ctx), ctx)
        assert watcher.process_once() == 3
        assert sorted(text for _, text in channel.sent) == ["a", "b"]
        assert list(tasks_dir(data_dir, "team-g").iterdir()) == []


def test_group_with_any_privileged_mapping_is_privileged():
    mappings = """
- {externalId: ops-chat, ownerGroup: ops}
- {externalId: ops-admin, ownerGroup: ops, isPrivileged: true}
- {externalId: chat-g, ownerGroup: team-g}
"""
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d, mappings=mappings)
        assert ctx.is_privileged("ops") is True
        assert ctx.is_privileged("team-g") is False
        assert ctx.is_privileged("main") is True


class BrokenFileRegistrar:
    def __init__(self, registry_path):
        self._path = registry_path

    def register_group(self, jid, name, folder, trigger=None):
        with open(self._path, "a", encoding="utf-8") as f:
            f.write("- {externalId: [unclosed\n")
        return ActionOutcome(success=True, message=f"{name} registered")


def test_register_group_succeeds_even_if_reload_fails():
    with tempfile.TemporaryDirectory() as d:
        ctx = _context(d)
        ctx.registrar = BrokenFileRegistrar(ctx.registry.path)
        req = IpcRequest(
            type="register_group",
            request_id="r10",
            source_group="main",
            is_privileged=True,
            payload={"jid": "new@chat", "name": "New", "folder": "new-group"},
        )
        default_chain(ctx).dispatch(req, Path(d) / "data")
        assert _read_result(d, "main", "r10") == {"success": True, "message": "New registered"}
        # 旧快照保留
        assert ctx.registry.find_by_external_id("chan-g").owner_group == "team-g"
