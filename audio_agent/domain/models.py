"""统一的对话与结果数据模型。

本模块定义了会话引擎与 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

Provider 适配器（如 KimiClient）只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from audio_agent.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型（与 OpenAI / Moonshot 的 role 字段对应，"tool" 即工具结果）
Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色。
    - content: 纯文本内容，可以为空（例如只包含工具调用的 assistant 消息）。
    - meta: 附加元数据，不发给 Provider，只用于日志。
    - tool_calls: assistant 消息触发的工具调用列表。
    - tool_call_id: role 为 "tool" 时，对应哪一次工具调用。
    - reasoning_content: thinking 模型返回的推理内容，多轮工具调用时需要原样回传。
    """

    role: Role
    content: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    reasoning_content: Optional[str] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。"""

    provider: str  # 逻辑 Provider 名，如 "kimi"
    model: str  # 逻辑模型名，如 "audio-chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    tools: Optional[List["ToolDef"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只使用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider / model: 逻辑名。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def first_message(self) -> ChatMessage:
        return self.choices[0].message
