"""extract_audio 工具：把工具调用协议桥接到 AudioExtractor。

- EXTRACT_AUDIO_TOOL 是暴露给模型的工具描述。
- ExtractAudioArgs 用 pydantic 校验/补全参数，失败抛 SchemaValidationError。
- make_extract_audio_tool 返回执行器可注册的工具函数。
"""

from typing import Any, Dict
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from audio_agent.domain.exceptions import SchemaValidationError
from audio_agent.domain.extraction import (
    DEFAULT_FORMAT,
    DEFAULT_OUTPUT_DIR,
    SUPPORTED_FORMATS,
    AudioFormat,
    ExtractionRequest,
    ExtractionResult,
    ExtractionSuccess,
)
from audio_agent.media.extractor import AudioExtractor
from .definitions import ToolDef, ToolOutput, ToolParam


TOOL_NAME = "extract_audio"


def build_extract_audio_tool(default_output_dir: str = DEFAULT_OUTPUT_DIR) -> ToolDef:
    return ToolDef(
        name=TOOL_NAME,
        description=(
            "Extract audio from a video URL and save as audio file. "
            "Supports YouTube, Bilibili, and other sites supported by yt-dlp."
        ),
        params={
            "url": ToolParam(
                name="url",
                description="Video URL (YouTube, Bilibili, etc.)",
                required=True,
                schema={"type": "string", "format": "uri"},
            ),
            "format": ToolParam(
                name="format",
                description=f"Audio format (default: {DEFAULT_FORMAT})",
                required=False,
                schema={"type": "string", "enum": list(SUPPORTED_FORMATS), "default": DEFAULT_FORMAT},
            ),
            "output_dir": ToolParam(
                name="output_dir",
                description="Output directory for audio files",
                required=False,
                schema={"type": "string", "default": default_output_dir},
            ),
        },
    )


EXTRACT_AUDIO_TOOL = build_extract_audio_tool()


class ExtractAudioArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    url: str
    format: AudioFormat = DEFAULT_FORMAT
    output_dir: str = DEFAULT_OUTPUT_DIR

    @field_validator("url")
    @classmethod
    def _url_shaped(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an http(s) URL")
        return v

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower().lstrip(".")
        return v

    @field_validator("output_dir")
    @classmethod
    def _non_empty_dir(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be empty")
        return v


def parse_arguments(arguments: Dict[str, Any], default_output_dir: str = DEFAULT_OUTPUT_DIR) -> ExtractionRequest:
    """校验工具参数并构造 ExtractionRequest。"""

    payload = {k: v for k, v in (arguments or {}).items() if v is not None}
    payload.setdefault("output_dir", default_output_dir)
    try:
        args = ExtractAudioArgs.model_validate(payload)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        )
        raise SchemaValidationError(
            code="INVALID_TOOL_ARGUMENTS",
            message=f"Invalid arguments for {TOOL_NAME}: {details}",
            tool=TOOL_NAME,
        ) from exc
    return ExtractionRequest(url=args.url, format=args.format, output_dir=args.output_dir)


def render_result(result: ExtractionResult) -> ToolOutput:
    if isinstance(result, ExtractionSuccess):
        return ToolOutput(
            content=(
                "Successfully extracted audio!\n\n"
                f"File: {result.file_path}\n"
                f"Format: {result.format}\n"
                f"Duration: {result.duration}"
            )
        )
    return ToolOutput(content=f"Error: {result.error}", is_error=True)


def make_extract_audio_tool(extractor: AudioExtractor, default_output_dir: str = DEFAULT_OUTPUT_DIR):
    def _run(args: Dict[str, Any]) -> ToolOutput:
        req = parse_arguments(args, default_output_dir)
        return render_result(extractor.extract_request(req))

    return _run
