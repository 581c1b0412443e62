import json
import os
import random
import re
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4

from agent_bridge.config.settings import settings
from agent_bridge.domain.exceptions import BusinessError, ValidationError
from agent_bridge.domain.session import Session, SessionStore
from agent_bridge.infrastructure.logging.logger import logger
from agent_bridge.providers.openai_compat import message_from_payload, message_to_payload

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _check_id(value: str, what: str) -> str:
    if not value or not _SAFE_ID.match(value) or ".." in value:
        raise ValidationError(code="INVALID_SESSION_ID", message=f"invalid {what}: {value!r}")
    return value


class JsonSessionStore(SessionStore):
    """每个会话一个 JSON 文件：``{root}/sessions/{group}/{session_id}.json``。

    文件保存完整历史，整体覆盖写入；回放窗口由调用方截取。
    """

    def __init__(self, root: Union[str, Path, None] = None):
        self._root = Path(root or settings.data_dir).resolve()
        self._sessions_root = self._root / "sessions"

    def _path(self, group_folder: str, session_id: str) -> Path:
        _check_id(group_folder, "group folder")
        _check_id(session_id, "session id")
        return self._sessions_root / group_folder / f"{session_id}.json"

    def load(self, group_folder: str, session_id: str) -> Optional[Session]:
        path = self._path(group_folder, session_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            messages = [message_from_payload(m) for m in data.get("messages") or []]
            updated_raw = data.get("updatedAt")
            updated_at = (
                datetime.fromisoformat(str(updated_raw).replace("Z", "+00:00"))
                if updated_raw
                else datetime.now(timezone.utc)
            )
        except (OSError, ValueError, AttributeError, TypeError) as e:
            backup = self._set_aside(path)
            logger.warning(
                "Failed to load session, starting fresh",
                extra={
                    "extra": {
                        "group": group_folder,
                        "session_id": session_id,
                        "error": str(e),
                        "backup": backup.name if backup else None,
                    }
                },
            )
            return None
        return Session(messages=messages, updated_at=updated_at)

    @staticmethod
    def _set_aside(path: Path) -> Optional[Path]:
        """把无法解析的会话文件改名保留，避免下一次 save 覆盖掉。"""
        backup = path.with_name(f"{path.name}.corrupt-{int(time.time() * 1000)}")
        try:
            os.replace(path, backup)
        except OSError:
            return None
        return backup

    def save(self, group_folder: str, session_id: str, session: Session) -> None:
        path = self._path(group_folder, session_id)
        session.updated_at = datetime.now(timezone.utc)
        obj = {
            "messages": [message_to_payload(m) for m in session.messages],
            "updatedAt": session.updated_at.isoformat().replace("+00:00", "Z"),
        }
        tmp_path = path.parent / f"{session_id}.{uuid4().hex}.json.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def new_session_id(self) -> str:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return f"local-{int(time.time() * 1000)}-{suffix}"
