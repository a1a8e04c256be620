"""Kimi Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 Moonshot/Kimi 的 chat/completions 请求格式（含 function tools）。
3. 调用 HTTP 接口并把网络/API 异常映射为 UpstreamServiceError 子类。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。
"""

import httpx
import json
from typing import Any, Dict, List

from audio_agent.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
)
from audio_agent.domain.exceptions import NetworkError, ApiError, RateLimitError, ValidationError
from audio_agent.providers.registry import KIMI_CONFIG, ModelConfig, get_model_config
from audio_agent.tools.definitions import ToolDef, ToolCall


def _malformed(message: str) -> ApiError:
    return ApiError(code="MALFORMED_RESPONSE", message=message, http_status=502)


class KimiClient:
    """Kimi 提供方客户端实现。

    - name: Provider 名称（供日志使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    - close: 关闭底层 httpx 连接池。
    """

    name = "kimi"

    def __init__(self, settings):
        if not getattr(settings, "kimi_api_key", None):
            # 缺少凭据直接失败，上层据此拒绝启动
            raise ValidationError(code="MISSING_API_KEY", message="KIMI_API_KEY / MOONSHOT_API_KEY not set")
        self._settings = settings
        self._base_url = (getattr(settings, "kimi_base_url", None) or KIMI_CONFIG.base_url).rstrip("/")
        self._http = httpx.Client(timeout=settings.http_timeout, trust_env=False)

    def close(self) -> None:
        self._http.close()

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        model_cfg = get_model_config(KIMI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg)
        try:
            resp = self._http.post(
                f"{self._base_url}/chat/completions",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self._settings.kimi_api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Kimi rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            raise _malformed("Response body is not JSON")
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        """将 ChatRequest 转成 Kimi 所需的请求 JSON。"""

        msgs = [self._message_to_payload(m) for m in req.messages]
        temperature = req.temperature if req.temperature is not None else model_cfg.default_temperature
        payload = {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        """将 Kimi 的原始响应 JSON 解析为统一的 ChatResult。"""

        if not isinstance(data, dict) or not data.get("choices"):
            raise _malformed("Response contains no choices")
        if not isinstance(data["choices"], list):
            raise _malformed("Response choices is not a list")
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data["choices"]):
            if not isinstance(ch, dict):
                raise _malformed(f"Choice {i} is not an object")
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise _malformed(f"Choice {i} message is not an object")
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=i, message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        if not isinstance(usage_raw, dict):
            raise _malformed("Response usage is not an object")
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider="kimi", model=req.model, choices=choices, usage=usage, raw=data)

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 Moonshot/Kimi 的 function tool 描述。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            properties[name] = param.schema or {"type": "string"}
            if param.description:
                properties[name] = {
                    **properties[name],
                    "description": param.description,
                }
            if param.required:
                required.append(name)
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条厂商 message 转换为 ChatMessage，并把 tool_calls 解析为 ToolCall 列表。"""

        tool_calls_raw = payload.get("tool_calls") or []
        if not isinstance(tool_calls_raw, list):
            raise _malformed("Message tool_calls is not a list")
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(tool_calls_raw):
            if not isinstance(call, dict):
                raise _malformed(f"Tool call {idx} is not an object")
            func = call.get("function") or {}
            if not isinstance(func, dict):
                raise _malformed(f"Tool call {idx} function is not an object")
            name = func.get("name") or call.get("name") or ""
            arguments = self._parse_arguments(func.get("arguments"))
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=name,
                    arguments=arguments,
                )
            )
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content") or None,
            tool_calls=tool_calls or None,
            tool_call_id=payload.get("tool_call_id"),
            reasoning_content=payload.get("reasoning_content") or None,
        )

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        """解析工具调用的 arguments 字段。

        Moonshot/Kimi 会把 arguments 作为 JSON 字符串返回，这里做一层
        json.loads 尝试，失败时保留原始字符串到 `_raw`，交给工具的参数校验报错。
        """

        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            if not raw.strip():
                return {}
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
            return parsed if isinstance(parsed, dict) else {"_raw": raw}
        return {}

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.content or message.role in ("tool", "user", "system"):
            payload["content"] = message.content or ""
        if message.reasoning_content:
            payload["reasoning_content"] = message.reasoning_content
        if message.tool_calls:
            serialized_calls = []
            for call in message.tool_calls:
                serialized_calls.append(
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments, ensure_ascii=False),
                        },
                    }
                )
            payload["tool_calls"] = serialized_calls
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload
