"""系统提示词加载工具。

基础提示词来自本目录的 system.md，群组目录下存在 INSTRUCTIONS.md 时
追加在 ``--- Group Instructions ---`` 分隔行之后。
"""

import logging
from pathlib import Path
from typing import Union

from agent_bridge.infrastructure.logging.logger import log_event

PROMPTS_DIR = Path(__file__).resolve().parent
GROUP_INSTRUCTIONS_FILE = "INSTRUCTIONS.md"


def build_system_prompt(assistant_name: str, groups_dir: Union[str, Path], group_folder: str) -> str:
    parts = [(PROMPTS_DIR / "system.md").read_text(encoding="utf-8").format(assistant_name=assistant_name).rstrip()]

    instructions = Path(groups_dir) / group_folder / GROUP_INSTRUCTIONS_FILE
    if instructions.exists():
        try:
            parts.append("\n--- Group Instructions ---")
            parts.append(instructions.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            parts.pop()
            log_event(logging.WARNING, "Failed to read group instructions", group=group_folder, error=str(e))
    return "\n".join(parts)
