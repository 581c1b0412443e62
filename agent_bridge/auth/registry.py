"""外部资源归属登记表。

映射文件由运维或 register_group 请求维护，这里只负责整体重新加载：

- 没有局部更新接口，reload() 是唯一的变更路径；
- 每次 reload 都构建一个新的不可变快照，再用一次引用赋值替换旧快照，
  并发的查询要么看到旧快照，要么看到新快照，不会看到半更新的列表。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from agent_bridge.domain.ipc import ResourceMapping
from agent_bridge.infrastructure.logging.logger import log_event


@dataclass(frozen=True)
class _Snapshot:
    mappings: Tuple[ResourceMapping, ...]
    by_external_id: Mapping[str, ResourceMapping]
    by_owner: Mapping[str, ResourceMapping]

    @classmethod
    def build(cls, mappings: Iterable[ResourceMapping]) -> "_Snapshot":
        items = tuple(mappings)
        by_external_id: Dict[str, ResourceMapping] = {}
        by_owner: Dict[str, ResourceMapping] = {}
        for m in items:
            by_external_id[m.external_id] = m
            # 同一群组可能绑定多个资源，按 owner 查询时取第一条
            by_owner.setdefault(m.owner_group, m)
        return cls(mappings=items, by_external_id=by_external_id, by_owner=by_owner)


_EMPTY = _Snapshot.build(())


def _first(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def _parse_entries(data: Any) -> List[ResourceMapping]:
    if isinstance(data, dict):
        data = data.get("mappings") or []
    if not isinstance(data, list):
        raise ValueError("mapping file must contain a list or a 'mappings' list")

    items: List[ResourceMapping] = []
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict):
            log_event(logging.WARNING, "Skipping malformed resource mapping", index=idx)
            continue
        external_id = _first(entry, "externalId", "external_id", "jid")
        owner = _first(entry, "ownerGroup", "owner_group", "folder")
        if not external_id or not owner:
            log_event(logging.WARNING, "Skipping incomplete resource mapping", index=idx)
            continue
        privileged = _first(entry, "isPrivileged", "is_privileged", "isMain")
        items.append(
            ResourceMapping(
                external_id=str(external_id),
                owner_group=str(owner),
                is_privileged=bool(privileged),
            )
        )
    return items


class ResourceRegistry:
    def __init__(self, path: Union[str, Path], *, autoload: bool = True):
        self._path = Path(path)
        self._snapshot: _Snapshot = _EMPTY
        self._reload_lock = threading.Lock()
        if autoload:
            self.reload()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> int:
        """重新读取映射文件并原子替换快照，返回加载的映射条数。

        文件缺失视为空集合（记录 warning）；文件无法解析时保留旧快照并抛出 ValueError。
        """
        with self._reload_lock:
            if not self._path.exists():
                log_event(logging.WARNING, "Resource mapping file not found", path=str(self._path))
                self._snapshot = _EMPTY
                return 0
            try:
                raw = yaml.safe_load(self._path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as e:
                log_event(logging.ERROR, "Failed to read resource mapping file", path=str(self._path), error=str(e))
                raise ValueError(f"cannot read mapping file {self._path}: {e}") from e
            snapshot = _Snapshot.build(_parse_entries(raw if raw is not None else []))
            self._snapshot = snapshot
        log_event(logging.INFO, "Resource mappings loaded", path=str(self._path), count=len(snapshot.mappings))
        return len(snapshot.mappings)

    def find_by_external_id(self, external_id: str) -> Optional[ResourceMapping]:
        return self._snapshot.by_external_id.get(external_id)

    def find_by_owner(self, group_folder: str) -> Optional[ResourceMapping]:
        return self._snapshot.by_owner.get(group_folder)

    def mappings(self) -> Tuple[ResourceMapping, ...]:
        return self._snapshot.mappings

    def __len__(self) -> int:
        return len(self._snapshot.mappings)
