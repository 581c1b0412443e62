"""资源归属登记表与授权闸门。"""

from agent_bridge.auth.gate import authorize
from agent_bridge.auth.registry import ResourceRegistry

__all__ = ["ResourceRegistry", "authorize"]
