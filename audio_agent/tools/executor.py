from typing import Callable, Dict, Any, List, Optional

from audio_agent.domain.exceptions import BusinessError
from audio_agent.infrastructure.logging.logger import logger
from audio_agent.media.extractor import AudioExtractor
from .definitions import ToolCall, ToolResult, ToolDef, ToolOutput
from .extract_audio import TOOL_NAME as EXTRACT_AUDIO, build_extract_audio_tool, make_extract_audio_tool


ToolFunc = Callable[[Dict[str, Any]], ToolOutput]


class ToolExecutor:
    """按名称分发工具调用，每次调用恰好产出一个 ToolResult。

    工具带副作用（下载文件），所以不对结果做缓存。
    """

    def __init__(self, tools: Dict[str, ToolFunc], tool_defs: Optional[List[ToolDef]] = None):
        self._tools = tools
        self._defs = {d.name: d for d in (tool_defs or [])}

    @property
    def tool_defs(self) -> List[ToolDef]:
        return list(self._defs.values())

    def execute(self, call: ToolCall) -> ToolResult:
        func = self._tools.get(call.name)
        if not func:
            return ToolResult(call_id=call.id, content=f"Error: Tool not registered: {call.name}", is_error=True)
        try:
            output = func(call.arguments)
        except BusinessError as exc:
            logger.info(
                "Tool rejected call",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "code": exc.code}},
            )
            return ToolResult(call_id=call.id, content=f"Error: {exc.message}", is_error=True)
        except Exception as exc:
            logger.exception(
                "Tool raised unexpectedly",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id}},
            )
            return ToolResult(call_id=call.id, content=f"Error: {exc}", is_error=True)
        return ToolResult(call_id=call.id, content=output.content, is_error=output.is_error)


def default_tools(extractor: AudioExtractor, default_output_dir: str = "./output") -> Dict[str, ToolFunc]:
    return {
        EXTRACT_AUDIO: make_extract_audio_tool(extractor, default_output_dir),
    }


def default_tool_defs(default_output_dir: str = "./output") -> List[ToolDef]:
    return [build_extract_audio_tool(default_output_dir)]


def build_executor(extractor: AudioExtractor, default_output_dir: str = "./output") -> ToolExecutor:
    return ToolExecutor(
        default_tools(extractor, default_output_dir),
        default_tool_defs(default_output_dir),
    )
