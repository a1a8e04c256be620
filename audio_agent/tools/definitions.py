"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在会话引擎中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
"""

from dataclasses import dataclass
from typing import Dict, Any


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolDef:
    """一个可供 LLM 调用的工具定义，注册后不再修改。"""

    name: str
    description: str
    params: Dict[str, ToolParam]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class ToolOutput:
    """工具函数的返回值：文本内容与是否为错误。"""

    content: str
    is_error: bool = False


@dataclass
class ToolResult:
    """工具执行结果的封装（文本形式），call_id 与 ToolCall.id 一一对应。"""

    call_id: str
    content: str
    is_error: bool = False
