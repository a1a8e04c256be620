from audio_agent.domain.extraction import ExtractionFailure, ExtractionRequest, ExtractionSuccess
from audio_agent.domain.models import ChatMessage
from audio_agent.prompts import load_system_prompt


def test_models_exist():
    cm = ChatMessage(role="user", content="hi")
    assert cm.role == "user"
    assert cm.tool_calls is None and cm.tool_call_id is None


def test_extraction_result_is_tagged():
    ok = ExtractionSuccess(file_path="./output/a.mp3", duration="0:59", format="mp3")
    bad = ExtractionFailure(error="boom")
    assert ok.ok is True and bad.ok is False
    req = ExtractionRequest(url="https://example.com/v")
    assert (req.format, req.output_dir) == ("mp3", "./output")


def test_system_prompt_loads():
    prompt = load_system_prompt()
    assert "extract audio" in prompt
