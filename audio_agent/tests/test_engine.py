from audio_agent.agents.engine import ConversationEngine, EngineConfig, SessionState
from audio_agent.domain.exceptions import NetworkError
from audio_agent.domain.extraction import ExtractionSuccess
from audio_agent.domain.models import ChatChoice, ChatMessage, ChatResult
from audio_agent.tools.definitions import ToolCall
from audio_agent.tools.executor import build_executor


class ScriptedProvider:
    """按顺序返回预设回复；元素为异常时抛出。"""

    name = "fake"

    def __init__(self, replies):
        self._replies = list(replies)
        self.requests = []
        self.closed = False

    def chat(self, req):
        self.requests.append(req)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=reply)])

    def close(self):
        self.closed = True


class FakeExtractor:
    def __init__(self):
        self.requests = []

    def extract_request(self, req):
        self.requests.append(req)
        name = "My Video" if len(self.requests) == 1 else f"Video {len(self.requests)}"
        return ExtractionSuccess(file_path=f"./output/{name}.{req.format}", duration="3:42", format=req.format)


def final(text):
    return ChatMessage(role="assistant", content=text)


def tool_calls(*calls):
    return ChatMessage(role="assistant", tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in calls])


def make_engine(replies, max_tool_rounds=20):
    provider = ScriptedProvider(replies)
    extractor = FakeExtractor()
    engine = ConversationEngine(
        provider_client=provider,
        tool_executor=build_executor(extractor),
        config=EngineConfig(provider="fake", model="audio-chat", max_tool_rounds=max_tool_rounds),
        system_prompt="sys",
    )
    return engine, provider, extractor


def roles(engine):
    return [m.role for m in engine.history]


def test_end_to_end_extraction_turn():
    engine, provider, extractor = make_engine(
        [
            tool_calls(("call-1", "extract_audio", {"url": "https://example.com/v"})),
            final("Saved ./output/My Video.mp3 (3:42)."),
        ]
    )
    outcome = engine.handle_input("extract audio from https://example.com/v")

    assert outcome.kind == "answer"
    assert outcome.text == "Saved ./output/My Video.mp3 (3:42)."
    assert outcome.tool_rounds == 1
    assert engine.state is SessionState.AWAITING_USER_INPUT
    assert roles(engine) == ["system", "user", "assistant", "tool", "assistant"]
    tool_msg = engine.history[3]
    assert tool_msg.tool_call_id == "call-1"
    assert "File: ./output/My Video.mp3" in tool_msg.content
    assert "Duration: 3:42" in tool_msg.content
    assert extractor.requests[0].url == "https://example.com/v"

    first_req, second_req = provider.requests
    assert first_req.tools[0].name == "extract_audio"
    assert first_req.tool_choice == "auto"
    assert [m.role for m in second_req.messages] == ["system", "user", "assistant", "tool"]


def test_plain_answer_without_tools():
    engine, provider, extractor = make_engine([final("Hello!")])
    outcome = engine.handle_input("hi")
    assert outcome.kind == "answer" and outcome.text == "Hello!"
    assert roles(engine) == ["system", "user", "assistant"]
    assert extractor.requests == []


def test_multiple_calls_dispatched_in_order():
    engine, _, extractor = make_engine(
        [
            tool_calls(
                ("b", "extract_audio", {"url": "https://example.com/1", "format": "flac"}),
                ("a", "extract_audio", {"url": "https://example.com/2"}),
            ),
            final("done"),
        ]
    )
    engine.handle_input("get both")
    assert [r.url for r in extractor.requests] == ["https://example.com/1", "https://example.com/2"]
    assert [m.tool_call_id for m in engine.history if m.role == "tool"] == ["b", "a"]


def test_chained_tool_rounds_share_history():
    engine, provider, _ = make_engine(
        [
            tool_calls(("1", "extract_audio", {"url": "https://example.com/1"})),
            tool_calls(("2", "extract_audio", {"url": "https://example.com/2", "format": "wav"})),
            final("two files"),
        ]
    )
    outcome = engine.handle_input("first one, then another")
    assert outcome.tool_rounds == 2
    assert roles(engine) == ["system", "user", "assistant", "tool", "assistant", "tool", "assistant"]
    assert len(provider.requests[2].messages) == 6


def test_invalid_arguments_become_error_tool_result():
    engine, _, extractor = make_engine(
        [tool_calls(("1", "extract_audio", {"format": "mp3"})), final("I need a URL")]
    )
    outcome = engine.handle_input("extract something")
    assert outcome.kind == "answer"
    assert engine.history[3].meta["is_error"] is True
    assert engine.history[3].content.startswith("Error: Invalid arguments for extract_audio")
    assert extractor.requests == []


def test_upstream_failure_rolls_back_and_session_continues():
    engine, provider, _ = make_engine(
        [NetworkError(code="NETWORK_ERROR", message="connection reset"), final("second try works")]
    )
    outcome = engine.handle_input("first try")
    assert outcome.kind == "error"
    assert outcome.text == "connection reset"
    assert roles(engine) == ["system"]
    assert engine.state is SessionState.AWAITING_USER_INPUT

    outcome = engine.handle_input("again")
    assert outcome.kind == "answer" and outcome.text == "second try works"
    assert [m.content for m in engine.history] == ["sys", "again", "second try works"]


def test_upstream_failure_after_tool_round_drops_whole_turn():
    engine, _, extractor = make_engine(
        [
            final("hello"),
            tool_calls(("1", "extract_audio", {"url": "https://example.com/v"})),
            NetworkError(code="NETWORK_ERROR", message="timeout"),
        ]
    )
    engine.handle_input("hi")
    outcome = engine.handle_input("extract https://example.com/v")
    assert outcome.kind == "error"
    assert roles(engine) == ["system", "user", "assistant"]
    assert len(extractor.requests) == 1


def test_empty_input_is_ignored():
    engine, provider, _ = make_engine([])
    assert engine.handle_input("   ").kind == "ignored"
    assert engine.handle_input("").kind == "ignored"
    assert roles(engine) == ["system"]
    assert provider.requests == []
    assert engine.state is SessionState.AWAITING_USER_INPUT


def test_exit_phrases_terminate_regardless_of_history():
    for phrase in ("quit", "EXIT", "Quit ", "exit"):
        engine, _, _ = make_engine([final("a"), final("b")])
        engine.handle_input("one")
        engine.handle_input("two")
        assert engine.handle_input(phrase).kind == "terminated"
        assert engine.state is SessionState.TERMINATED
        assert engine.handle_input("more").kind == "terminated"


def test_round_cap_forces_final_answer():
    looping = [tool_calls((str(i), "extract_audio", {"url": f"https://example.com/{i}"})) for i in range(2)]
    engine, provider, extractor = make_engine(looping + [final("stopping here")], max_tool_rounds=2)
    outcome = engine.handle_input("keep going")
    assert outcome.forced_final is True
    assert outcome.text == "stopping here"
    assert len(extractor.requests) == 2
    last_req = provider.requests[-1]
    assert last_req.tool_choice == "none" and last_req.tools is None
    assert last_req.messages[-1].role == "system"
    assert engine.history[-1].role == "assistant"
    assert [m.role for m in engine.history].count("system") == 1


def test_close_releases_provider():
    engine, provider, _ = make_engine([])
    engine.close()
    assert provider.closed is True
    assert engine.state is SessionState.TERMINATED
