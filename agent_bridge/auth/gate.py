"""授权闸门。

系统中唯一的安全判定点：所有特权动作在触达外部服务之前都必须经过 authorize()。
判定只依据宿主持有的登记表，不读取请求 payload 中的任何身份声明。
"""

import logging

from agent_bridge.auth.registry import ResourceRegistry
from agent_bridge.domain.ipc import AuthDecision
from agent_bridge.infrastructure.logging.logger import log_event


NOT_MAPPED = "resource not mapped to any group"
NOT_AUTHORIZED = "not authorized for this resource"


def authorize(
    registry: ResourceRegistry,
    source_group: str,
    is_privileged_caller: bool,
    target_external_id: str,
) -> AuthDecision:
    mapping = registry.find_by_external_id(target_external_id) if target_external_id else None
    if mapping is None:
        log_event(
            logging.WARNING,
            "Authorization denied",
            source_group=source_group,
            target=target_external_id,
            reason=NOT_MAPPED,
        )
        return AuthDecision.deny(NOT_MAPPED)

    # main 群组可以操作任何已登记的资源
    if is_privileged_caller:
        return AuthDecision.allow()

    if mapping.owner_group == source_group:
        return AuthDecision.allow()

    log_event(
        logging.WARNING,
        "Authorization denied",
        source_group=source_group,
        target=target_external_id,
        owner_group=mapping.owner_group,
        reason=NOT_AUTHORIZED,
    )
    return AuthDecision.deny(NOT_AUTHORIZED)
