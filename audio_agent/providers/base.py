"""Provider 抽象接口。

会话引擎不直接依赖具体厂商的 HTTP SDK，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 KimiClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
"""

from typing import Protocol
from audio_agent.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - chat(req): 执行一次非流式对话调用，失败时抛 UpstreamServiceError 子类。
    - close(): 释放底层连接，会话结束时调用。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def close(self) -> None:
        ...
