"""会话引擎。

ConversationEngine 持有一次会话的完整消息历史，驱动“用户输入 → 模型 →
工具 → 模型 …”的循环，直到模型给出最终回答或发生上游错误。

状态机：

    AWAITING_USER_INPUT --(非空输入)--> AWAITING_MODEL_RESPONSE
    AWAITING_MODEL_RESPONSE --(tool_calls)--> DISPATCHING_TOOLS --> AWAITING_MODEL_RESPONSE
    AWAITING_MODEL_RESPONSE --(最终回答 / 上游错误)--> AWAITING_USER_INPUT
    AWAITING_USER_INPUT --(quit/exit)--> TERMINATED

历史只追加；唯一的例外是上游调用失败时，整轮（从本轮用户消息开始）被回滚。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple
from uuid import uuid4
import logging
import time

from audio_agent.domain.exceptions import UpstreamServiceError, ApiError
from audio_agent.domain.models import ChatMessage, ChatRequest, ChatResult, ChatUsage
from audio_agent.infrastructure.logging.logger import logger
from audio_agent.prompts import load_system_prompt
from audio_agent.providers.base import ProviderClient
from audio_agent.tools.definitions import ToolCall, ToolResult
from audio_agent.tools.executor import ToolExecutor


EXIT_PHRASES = frozenset({"quit", "exit"})
FINAL_HINT = (
    "You have reached the tool call limit for this request. "
    "Do not call any more tools. Summarize what was done and the results so far for the user."
)


class SessionState(str, Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    DISPATCHING_TOOLS = "dispatching_tools"
    TERMINATED = "terminated"


@dataclass
class EngineConfig:
    provider: str
    model: str
    temperature: Optional[float] = None
    max_tool_rounds: int = 20  # 单轮用户输入内模型⇄工具往返上限


@dataclass
class EngineEvent:
    """工具调用过程中的通知，供 Shell 展示进度。

    kind:
        - "tools_requested": 模型本轮请求了一组工具调用（calls）。
        - "tool_call": 即将执行某个调用（call）。
        - "tool_result": 某个调用执行完毕（call + result）。
    """

    kind: Literal["tools_requested", "tool_call", "tool_result"]
    calls: List[ToolCall] = field(default_factory=list)
    call: Optional[ToolCall] = None
    result: Optional[ToolResult] = None


@dataclass
class TurnOutcome:
    """一次 handle_input 的结果。"""

    kind: Literal["ignored", "answer", "error", "terminated"]
    text: str = ""
    tool_rounds: int = 0
    forced_final: bool = False


def is_exit_phrase(text: str) -> bool:
    return text.strip().lower() in EXIT_PHRASES


class ConversationEngine:
    def __init__(
        self,
        provider_client: ProviderClient,
        tool_executor: ToolExecutor,
        config: Optional[EngineConfig] = None,
        system_prompt: Optional[str] = None,
        on_event: Optional[Callable[[EngineEvent], None]] = None,
    ):
        self._provider_client = provider_client
        self._tool_executor = tool_executor
        self._config = config or EngineConfig(provider=provider_client.name, model="audio-chat")
        self._on_event = on_event
        self._session_id = f"s-{uuid4().hex}"
        self._state = SessionState.AWAITING_USER_INPUT
        prompt = system_prompt if system_prompt is not None else load_system_prompt()
        self._history: List[ChatMessage] = [ChatMessage(role="system", content=prompt)]

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._history)

    @property
    def tool_defs(self):
        return self._tool_executor.tool_defs

    @property
    def session_id(self) -> str:
        return self._session_id

    def handle_input(self, user_input: str) -> TurnOutcome:
        """处理一次用户输入，返回后引擎回到 AWAITING_USER_INPUT（或 TERMINATED）。"""

        if self._state is SessionState.TERMINATED:
            return TurnOutcome(kind="terminated")
        if is_exit_phrase(user_input):
            self._state = SessionState.TERMINATED
            self._log(logging.INFO, "Session terminated by user", {})
            return TurnOutcome(kind="terminated")
        if not user_input.strip():
            return TurnOutcome(kind="ignored")

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}
        mark = len(self._history)
        self._history.append(ChatMessage(role="user", content=user_input))
        self._state = SessionState.AWAITING_MODEL_RESPONSE
        try:
            outcome = self._resolve_turn(log_ctx)
        except UpstreamServiceError as exc:
            # 回滚整轮，历史中不保留引发失败的悬空用户消息
            dropped = len(self._history) - mark
            del self._history[mark:]
            self._state = SessionState.AWAITING_USER_INPUT
            self._log(
                logging.WARNING,
                "Upstream call failed, turn rolled back",
                log_ctx,
                code=exc.code,
                error=exc.message,
                dropped_messages=dropped,
            )
            return TurnOutcome(kind="error", text=exc.message)

        self._state = SessionState.AWAITING_USER_INPUT
        self._log(
            logging.INFO,
            "Completed turn",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            tool_rounds=outcome.tool_rounds,
            history_length=len(self._history),
        )
        return outcome

    def close(self) -> None:
        """结束会话并释放 Provider 连接。"""

        self._state = SessionState.TERMINATED
        self._provider_client.close()

    def _resolve_turn(self, log_ctx: Dict[str, Any]) -> TurnOutcome:
        rounds = 0
        max_rounds = self._config.max_tool_rounds
        while True:
            if rounds >= max_rounds:
                return self._force_final(rounds, log_ctx)

            result = self._call_model(self._history, log_ctx, use_tools=True)
            assistant_msg = self._assistant_message(result)
            self._history.append(assistant_msg)

            if not assistant_msg.tool_calls:
                return TurnOutcome(kind="answer", text=assistant_msg.content or "", tool_rounds=rounds)

            rounds += 1
            self._state = SessionState.DISPATCHING_TOOLS
            self._dispatch(assistant_msg.tool_calls, rounds, log_ctx)
            self._state = SessionState.AWAITING_MODEL_RESPONSE

    def _dispatch(self, calls: List[ToolCall], round_num: int, log_ctx: Dict[str, Any]) -> None:
        """按收到的顺序逐个执行工具调用，每个调用追加一条 tool 消息。"""

        self._log(logging.INFO, "Executing tool calls", log_ctx, round=round_num, call_count=len(calls))
        self._emit(EngineEvent(kind="tools_requested", calls=list(calls)))
        for tool_call in calls:
            self._log(
                logging.INFO,
                "Tool call received",
                log_ctx,
                tool_name=tool_call.name,
                tool_call_id=tool_call.id,
                tool_args=tool_call.arguments,
            )
            self._emit(EngineEvent(kind="tool_call", call=tool_call))
            tool_result = self._tool_executor.execute(tool_call)
            self._log(
                logging.INFO,
                "Tool execution finished",
                log_ctx,
                tool_call_id=tool_call.id,
                is_error=tool_result.is_error,
                result_preview=(tool_result.content[:200] if tool_result.content else ""),
            )
            self._history.append(
                ChatMessage(
                    role="tool",
                    content=tool_result.content or "No result",
                    tool_call_id=tool_call.id,
                    meta={"tool_name": tool_call.name, "is_error": tool_result.is_error},
                )
            )
            self._emit(EngineEvent(kind="tool_result", call=tool_call, result=tool_result))

    def _force_final(self, rounds: int, log_ctx: Dict[str, Any]) -> TurnOutcome:
        """达到轮数上限：禁用工具再请求一次，让模型收尾。"""

        self._log(logging.WARNING, "Reached max tool rounds", log_ctx, max_rounds=self._config.max_tool_rounds)
        messages = self._history + [ChatMessage(role="system", content=FINAL_HINT)]
        result = self._call_model(messages, log_ctx, use_tools=False)
        assistant_msg = self._assistant_message(result)
        # 工具已禁用，即使模型仍返回 tool_calls 也不再执行
        assistant_msg.tool_calls = None
        self._history.append(assistant_msg)
        return TurnOutcome(kind="answer", text=assistant_msg.content or "", tool_rounds=rounds, forced_final=True)

    def _call_model(self, messages: List[ChatMessage], log_ctx: Dict[str, Any], use_tools: bool) -> ChatResult:
        tool_defs = self._tool_executor.tool_defs if use_tools else None
        req = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=list(messages),
            temperature=self._config.temperature,
            tools=tool_defs or None,
            tool_choice="auto" if use_tools else "none",
        )
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self._config.provider,
            model=self._config.model,
            message_count=len(req.messages),
        )
        result = self._provider_client.chat(req)
        if not result.choices:
            raise ApiError(code="MALFORMED_RESPONSE", message="Model returned no choices", http_status=502)
        if result.usage:
            self._log(logging.INFO, "Token usage", log_ctx, **self._usage_meta(result.usage))
        return result

    @staticmethod
    def _assistant_message(result: ChatResult) -> ChatMessage:
        msg = result.first_message
        msg.role = "assistant"
        return msg

    @staticmethod
    def _usage_meta(usage: ChatUsage) -> Dict[str, Any]:
        return {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        }

    def _emit(self, event: EngineEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _log(self, level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = {"session_id": self._session_id}
        payload.update(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
