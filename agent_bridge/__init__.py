"""Agent Bridge 顶层包。

沙箱内的工具调用 Agent 与宿主进程之间的桥接层：
文件邮箱传输、资源授权、宿主侧分发器链、OpenAI 兼容补全 Provider、
工具执行路由与会话持久化。
"""

from agent_bridge.api.service import create_host_context, create_host_watcher, run_group_agent

__all__ = ["create_host_context", "create_host_watcher", "run_group_agent"]
