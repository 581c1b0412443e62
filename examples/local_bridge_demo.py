"""Minimal demonstration: run one agent turn, then let the host drain the mailbox."""

from agent_bridge import create_host_context, create_host_watcher, run_group_agent
from agent_bridge.dispatch import ActionOutcome


class PrintingChatSender:
    def send_message(self, chat_jid, text):
        print(f"[{chat_jid}] {text}")
        return ActionOutcome(success=True, message="printed")


if __name__ == "__main__":
    reply = run_group_agent("Say hello, then save a note to notes.txt", "main", "demo-chat", is_privileged=True)
    print("Agent:", reply["result"] or reply["error"])
    watcher = create_host_watcher(create_host_context(chat_sender=PrintingChatSender()))
    print("Dispatched:", watcher.process_once())
