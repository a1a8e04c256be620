"""音频提取的请求与结果模型。

ExtractionResult 是一个带标签的联合类型：要么 ExtractionSuccess，
要么 ExtractionFailure，调用方按 `ok` / 类型分支，而不是检查字段是否为空。
"""

from dataclasses import dataclass
from typing import Literal, Tuple, Union


AudioFormat = Literal["mp3", "m4a", "aac", "opus", "wav", "flac"]
SUPPORTED_FORMATS: Tuple[str, ...] = ("mp3", "m4a", "aac", "opus", "wav", "flac")
DEFAULT_FORMAT: AudioFormat = "mp3"
DEFAULT_OUTPUT_DIR = "./output"
UNKNOWN_DURATION = "unknown"


@dataclass(frozen=True)
class ExtractionRequest:
    url: str
    format: AudioFormat = DEFAULT_FORMAT
    output_dir: str = DEFAULT_OUTPUT_DIR


@dataclass(frozen=True)
class ExtractionSuccess:
    file_path: str
    duration: str
    format: str
    ok: Literal[True] = True


@dataclass(frozen=True)
class ExtractionFailure:
    error: str
    ok: Literal[False] = False


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]
