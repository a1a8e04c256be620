import io

import pytest

from audio_agent.agents.engine import ConversationEngine, EngineConfig, SessionState
from audio_agent.cli import shell as shell_module
from audio_agent.cli.shell import InteractiveShell, build_engine
from audio_agent.config.settings import get_settings
from audio_agent.domain.exceptions import RateLimitError
from audio_agent.domain.extraction import ExtractionSuccess
from audio_agent.domain.models import ChatChoice, ChatMessage, ChatResult
from audio_agent.tools.definitions import ToolCall
from audio_agent.tools.executor import build_executor


class ScriptedProvider:
    name = "fake"

    def __init__(self, replies):
        self._replies = list(replies)
        self.closed = False

    def chat(self, req):
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=reply)])

    def close(self):
        self.closed = True


class FakeExtractor:
    def extract_request(self, req):
        return ExtractionSuccess(file_path="./output/My Video.mp3", duration="3:42", format=req.format)


def scripted_inputs(lines):
    it = iter(lines)

    def _input(prompt):
        try:
            return next(it)
        except StopIteration:
            raise EOFError

    return _input


def make_shell(replies, lines):
    out = io.StringIO()
    holder = {}
    engine = ConversationEngine(
        provider_client=ScriptedProvider(replies),
        tool_executor=build_executor(FakeExtractor()),
        config=EngineConfig(provider="fake", model="audio-chat"),
        system_prompt="sys",
        on_event=lambda e: holder["shell"].on_event(e),
    )
    holder["shell"] = InteractiveShell(engine, input_func=scripted_inputs(lines), out=out)
    return holder["shell"], engine, out


def test_shell_runs_tool_turn_and_quits():
    replies = [
        ChatMessage(
            role="assistant",
            tool_calls=[ToolCall(id="c1", name="extract_audio", arguments={"url": "https://example.com/v"})],
        ),
        ChatMessage(role="assistant", content="Saved to ./output/My Video.mp3"),
    ]
    shell, engine, out = make_shell(replies, ["", "extract audio from https://example.com/v", "quit", "never read"])
    shell.run()
    text = out.getvalue()
    assert "[Calling tools...]" in text
    assert '  → extract_audio({"url": "https://example.com/v"})' in text
    assert "  ← Result received" in text
    assert "Assistant: Saved to ./output/My Video.mp3" in text
    assert text.rstrip().endswith("Goodbye!")
    assert engine.state is SessionState.TERMINATED


def test_shell_reports_api_error_and_continues():
    replies = [RateLimitError(code="RATE_LIMIT", message="Kimi rate limit"), ChatMessage(role="assistant", content="ok")]
    shell, engine, out = make_shell(replies, ["hello", "hello again"])
    shell.run()
    text = out.getvalue()
    assert "Error calling API: Kimi rate limit" in text
    assert "Assistant: ok" in text
    assert "Goodbye!" in text
    assert [m.content for m in engine.history] == ["sys", "hello again", "ok"]


def test_banner_lists_tools():
    shell, engine, out = make_shell([], [])
    shell.print_banner(engine.tool_defs)
    text = out.getvalue()
    assert "  - extract_audio: Extract audio from a video URL" in text
    assert 'Enter your request (or "quit" to exit):' in text


def test_main_refuses_to_start_without_api_key(capsys):
    class NoKey:
        default_provider = "kimi"
        kimi_api_key = None

    assert shell_module.main(NoKey()) == 1
    assert "MOONSHOT_API_KEY" in capsys.readouterr().err


def test_build_engine_wires_settings(monkeypatch):
    class Settings:
        default_provider = "kimi"
        default_model = "audio-chat"
        kimi_api_key = "sk-test-0123456789"
        kimi_base_url = "https://api.moonshot.cn/v1"
        http_timeout = 1.0
        temperature = 0.6
        max_tool_rounds = 5
        output_dir = "./downloads"

    class Client:
        def __init__(self, *a, **kw):
            pass

        def close(self):
            pass

    monkeypatch.setattr("httpx.Client", Client)
    engine = build_engine(Settings())
    assert engine.tool_defs[0].params["output_dir"].schema["default"] == "./downloads"
    assert engine.history[0].role == "system"
    engine.close()


@pytest.fixture
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("KIMI_API_KEY", "MOONSHOT_API_KEY", "AUDIO_AGENT_CONFIG_FILE"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_main_reports_invalid_configuration(monkeypatch, capsys, fresh_settings):
    monkeypatch.setenv("MOONSHOT_API_KEY", "short")
    assert shell_module.main() == 1
    err = capsys.readouterr().err
    assert "Invalid configuration" in err
    assert "API key seems too short" in err
    assert "MOONSHOT_API_KEY" in err


def test_main_without_key_in_environment(capsys, fresh_settings):
    assert shell_module.main() == 1
    assert "MOONSHOT_API_KEY" in capsys.readouterr().err
