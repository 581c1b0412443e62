"""对外 API 服务模块。

提供两组入口：

- 沙箱侧：run_group_agent() 为某个群组跑一次工具调用 Agent；
- 宿主侧：create_host_context() / create_host_watcher() 组装授权登记表、
  分发器链与邮箱轮询器。
"""

from typing import Any, Dict, Mapping, Optional

from agent_bridge.agents.tool_loop import ToolCallingAgent
from agent_bridge.auth.registry import ResourceRegistry
from agent_bridge.config.settings import Settings, settings as default_settings
from agent_bridge.dispatch import HostContext, MailboxWatcher, default_chain
from agent_bridge.dispatch.ports import (
    ChannelClient,
    ChatSender,
    GroupRegistrar,
    MarketplaceClient,
    PlatformClient,
    TaskScheduler,
)
from agent_bridge.infrastructure.logging.logger import logger
from agent_bridge.infrastructure.mailbox.transport import messages_dir, tasks_dir
from agent_bridge.infrastructure.storage.json_store import JsonSessionStore
from agent_bridge.prompts import build_system_prompt
from agent_bridge.providers import create_provider, resolve_model_config
from agent_bridge.providers.base import ProviderClient
from agent_bridge.tools.catalog import tool_defs
from agent_bridge.tools.executor import ExecutionRouter, ToolContext


def run_group_agent(
    prompt: str,
    group_folder: str,
    chat_jid: str,
    is_privileged: bool = False,
    session_id: Optional[str] = None,
    model_overrides: Optional[Mapping[str, Any]] = None,
    provider: Optional[ProviderClient] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """运行一次群组 Agent 调用。

    Args:
        prompt: 用户输入
        group_folder: 群组目录名，决定文件工具的根目录与邮箱目录
        chat_jid: 当前会话标识，send_message 会发往这里
        is_privileged: 是否为特权群组，决定是否暴露特权工具
        session_id: 会话ID（可选，不提供则创建新会话）
        model_overrides: 群组级的 model / temperature / max_tokens 覆盖
        provider: 补全 Provider（可选，默认按配置创建）

    Returns:
        包含 status、result、newSessionId、error 的字典；失败不抛异常
    """
    cfg = settings or default_settings
    # 宿主轮询前目录就要存在
    messages_dir(cfg.data_path, group_folder).mkdir(parents=True, exist_ok=True)
    tasks_dir(cfg.data_path, group_folder).mkdir(parents=True, exist_ok=True)

    router = ExecutionRouter(
        ToolContext(
            group_folder=group_folder,
            chat_jid=chat_jid,
            is_privileged=is_privileged,
            data_dir=cfg.data_path,
            groups_dir=cfg.groups_path,
        ),
        result_timeout_ms=cfg.ipc_result_timeout_ms,
        result_poll_interval_ms=cfg.result_poll_interval_ms,
    )
    agent = ToolCallingAgent(
        provider=provider or create_provider(cfg),
        store=JsonSessionStore(cfg.data_path),
        router=router,
        tool_defs=tool_defs(is_privileged),
        model_config=resolve_model_config(cfg, model_overrides),
        group_folder=group_folder,
        system_prompt=build_system_prompt(cfg.assistant_name, cfg.groups_path, group_folder),
        timeout_seconds=cfg.llm_timeout,
    )
    outcome = agent.run(prompt, session_id)
    if outcome.status == "error":
        logger.error(
            f"Group agent failed: {outcome.error}",
            extra={"extra": {"group": group_folder, "session_id": session_id}},
        )
    return {
        "status": outcome.status,
        "result": outcome.result,
        "newSessionId": outcome.new_session_id,
        "error": outcome.error,
    }


def create_host_context(
    chat_sender: Optional[ChatSender] = None,
    channel_client: Optional[ChannelClient] = None,
    platform_client: Optional[PlatformClient] = None,
    scheduler: Optional[TaskScheduler] = None,
    registrar: Optional[GroupRegistrar] = None,
    marketplace_client: Optional[MarketplaceClient] = None,
    settings: Optional[Settings] = None,
) -> HostContext:
    cfg = settings or default_settings
    return HostContext(
        settings=cfg,
        registry=ResourceRegistry(cfg.registry_file),
        chat_sender=chat_sender,
        channel_client=channel_client,
        platform_client=platform_client,
        scheduler=scheduler,
        registrar=registrar,
        marketplace_client=marketplace_client,
    )


def create_host_watcher(context: HostContext) -> MailboxWatcher:
    """用默认分发器链创建邮箱轮询器；调用方自行决定 process_once() 还是 run()。"""

    return MailboxWatcher(default_chain(context), context, context.settings.data_path)
