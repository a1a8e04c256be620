"""交互式命令行入口。

读取用户输入交给 ConversationEngine，并把工具调用进度与最终回答打印出来。
服务对象在 build_engine 中显式构造，会话结束时显式关闭。
"""

import json
import sys
from typing import Any, Callable, Optional, TextIO

from pydantic import ValidationError as PydanticValidationError

from audio_agent.agents.engine import ConversationEngine, EngineConfig, EngineEvent, SessionState
from audio_agent.config.settings import get_settings
from audio_agent.domain.exceptions import ValidationError
from audio_agent.infrastructure.logging.logger import setup_logger
from audio_agent.media.extractor import AudioExtractor
from audio_agent.providers import create_provider
from audio_agent.tools.executor import build_executor


PROMPT = "You: "


def build_engine(settings: Any, on_event: Optional[Callable[[EngineEvent], None]] = None) -> ConversationEngine:
    """按配置组装 Provider、提取器、工具执行器与会话引擎。

    缺少 API key 时由 create_provider 抛出 ValidationError。
    """

    provider = create_provider(settings)
    extractor = AudioExtractor(settings)
    executor = build_executor(extractor, settings.output_dir)
    config = EngineConfig(
        provider=provider.name,
        model=settings.default_model,
        temperature=settings.temperature,
        max_tool_rounds=settings.max_tool_rounds,
    )
    return ConversationEngine(
        provider_client=provider,
        tool_executor=executor,
        config=config,
        on_event=on_event,
    )


class InteractiveShell:
    def __init__(
        self,
        engine: ConversationEngine,
        input_func: Callable[[str], str] = input,
        out: Optional[TextIO] = None,
    ):
        self._engine = engine
        self._input = input_func
        self._out = out or sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self._out, flush=True)

    def on_event(self, event: EngineEvent) -> None:
        if event.kind == "tools_requested":
            self._print("\n[Calling tools...]")
        elif event.kind == "tool_call" and event.call is not None:
            args = json.dumps(event.call.arguments, ensure_ascii=False)
            self._print(f"  → {event.call.name}({args})")
        elif event.kind == "tool_result":
            self._print("  ← Result received\n")

    def print_banner(self, tool_defs) -> None:
        self._print("Available tools:")
        for d in tool_defs:
            self._print(f"  - {d.name}: {d.description}")
        self._print()
        self._print('Enter your request (or "quit" to exit):\n')

    def run(self) -> None:
        """主循环；quit/exit、EOF 或 Ctrl-C 结束会话。"""

        while self._engine.state is not SessionState.TERMINATED:
            try:
                line = self._input(PROMPT)
            except (EOFError, KeyboardInterrupt):
                self._print()
                break
            outcome = self._engine.handle_input(line)
            if outcome.kind == "answer" and outcome.text:
                self._print(f"\nAssistant: {outcome.text}\n")
            elif outcome.kind == "error":
                self._print(f"\nError calling API: {outcome.text}")
        self._print("Goodbye!")


def _config_error_text(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg', '')}")
    return "; ".join(parts)


def main(settings: Any = None) -> int:
    if settings is None:
        try:
            settings = get_settings()
        except PydanticValidationError as exc:
            print(f"Error: Invalid configuration: {_config_error_text(exc)}", file=sys.stderr)
            print("Please set MOONSHOT_API_KEY in your environment or .env file", file=sys.stderr)
            return 1
    shell: Optional[InteractiveShell] = None

    def forward(event: EngineEvent) -> None:
        if shell is not None:
            shell.on_event(event)

    try:
        engine = build_engine(settings, on_event=forward)
    except ValidationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        print("Please set MOONSHOT_API_KEY in your environment or .env file", file=sys.stderr)
        return 1

    setup_logger(settings)
    shell = InteractiveShell(engine)
    try:
        print("Starting audio extraction assistant...\n", flush=True)
        shell.print_banner(engine.tool_defs)
        shell.run()
    finally:
        engine.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
