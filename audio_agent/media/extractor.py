"""音频提取编排。

AudioExtractor.extract 负责一次完整的提取请求：

1. 确保输出目录存在。
2. 记录目录快照（before-set）。下载器按视频标题命名输出文件，调用方无法预知文件名，
   只能靠前后快照比对找出新文件。
3. 对需要登录态的站点按需写临时 cookie 文件。
4. 调用 yt-dlp 提取音频。
5. 比对快照，选出新生成的音频文件（多个时取 mtime 最新的）。
6. 尽力调用 ffprobe 获取时长，失败时时长为 "unknown"。
7. 清理临时 cookie 文件。

extract 从不抛异常，所有失败都映射为 ExtractionFailure。

注意：快照比对只在同一目录同一时刻只有一个提取任务时成立，
并发写同一目录的提取可能互相“认领”对方的新文件。
"""

from pathlib import Path
from typing import AbstractSet, Any, Dict, Iterable, Mapping, Optional, Tuple
import math
import os

from audio_agent.domain.exceptions import ArtifactNotFound, BusinessError, ProcessError
from audio_agent.domain.extraction import (
    DEFAULT_FORMAT,
    SUPPORTED_FORMATS,
    UNKNOWN_DURATION,
    ExtractionFailure,
    ExtractionRequest,
    ExtractionResult,
    ExtractionSuccess,
)
from audio_agent.infrastructure.logging.logger import logger
from audio_agent.media.cookies import remove_cookie_file, stage_cookie_file
from audio_agent.media.process import ProcessRunner


OUTPUT_TEMPLATE = "%(title)s.%(ext)s"
PROBE_MAX_OUTPUT_BYTES = 64 * 1024


def audio_extensions(fmt: str) -> Tuple[str, ...]:
    """请求的格式放在最前，再加上常见音频扩展名（下载器可能改写扩展名）。"""

    exts = [fmt.lower()]
    exts.extend(e for e in SUPPORTED_FORMATS if e != fmt.lower())
    return tuple(exts)


def snapshot_dir(directory: Path) -> Dict[str, float]:
    """返回目录下普通文件的 文件名 -> mtime 映射。"""

    entries: Dict[str, float] = {}
    with os.scandir(directory) as it:
        for entry in it:
            try:
                if entry.is_file():
                    entries[entry.name] = entry.stat().st_mtime
            except FileNotFoundError:
                # 下载器的临时文件可能在遍历过程中被重命名
                continue
    return entries


def select_new_artifact(
    before: AbstractSet[str],
    after: Mapping[str, float],
    extensions: Iterable[str],
) -> Optional[str]:
    """从 after 快照中找出 before 中不存在的音频文件。

    多个候选时取 mtime 最新的；mtime 相同则按文件名排序，保证结果稳定。
    没有候选时返回 None。
    """

    allowed = {e.lower().lstrip(".") for e in extensions}
    candidates = [
        (mtime, name)
        for name, mtime in after.items()
        if name not in before and Path(name).suffix.lower().lstrip(".") in allowed
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda c: (-c[0], c[1]))
    return candidates[0][1]


def parse_probe_output(text: str) -> Optional[float]:
    """ffprobe 只输出一个秒数；无法解析或不是有限非负数时返回 None。"""

    try:
        seconds = float((text or "").strip())
    except ValueError:
        return None
    if math.isnan(seconds) or math.isinf(seconds) or seconds < 0:
        return None
    return seconds


def format_duration(seconds: Optional[float]) -> str:
    """把秒数格式化为 m:ss，秒数向下取整；None 时返回 "unknown"。"""

    if seconds is None:
        return UNKNOWN_DURATION
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


class AudioExtractor:
    """驱动下载器与探测器完成一次音频提取。"""

    def __init__(self, settings: Any, runner: Optional[ProcessRunner] = None):
        self._settings = settings
        self._runner = runner or ProcessRunner()

    def extract(
        self,
        url: str,
        fmt: str = DEFAULT_FORMAT,
        output_dir: Optional[str] = None,
    ) -> ExtractionResult:
        output_dir = output_dir or getattr(self._settings, "output_dir", None) or "./output"
        return self.extract_request(ExtractionRequest(url=url, format=fmt, output_dir=output_dir))

    def extract_request(self, req: ExtractionRequest) -> ExtractionResult:
        log_ctx = {"url": req.url, "format": req.format, "output_dir": req.output_dir}
        cookie_path: Optional[Path] = None
        try:
            out_dir = Path(req.output_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            before = set(snapshot_dir(out_dir))

            args = [
                "-x",
                "--audio-format", req.format,
                "--audio-quality", "0",
                "-o", os.path.join(req.output_dir, OUTPUT_TEMPLATE),
                "--no-playlist",
                req.url,
            ]
            cookie_path = stage_cookie_file(req.url, out_dir, self._settings)
            if cookie_path is not None:
                args = ["--cookies", str(cookie_path), *args]

            logger.info("Running downloader", extra={"extra": log_ctx})
            self._runner.run(
                self._settings.downloader_bin,
                args,
                timeout=self._settings.download_timeout,
                max_output_bytes=self._settings.max_output_bytes,
            )

            name = select_new_artifact(before, snapshot_dir(out_dir), audio_extensions(req.format))
            if name is None:
                raise ArtifactNotFound(
                    code="ARTIFACT_NOT_FOUND",
                    message="Audio extracted but file not found",
                )
            file_path = os.path.join(req.output_dir, name)
            logger.info("Selected audio artifact", extra={"extra": {**log_ctx, "file_path": file_path}})

            duration = format_duration(self._probe_duration(file_path))
            return ExtractionSuccess(file_path=file_path, duration=duration, format=req.format)
        except ArtifactNotFound as exc:
            logger.warning(exc.message, extra={"extra": log_ctx})
            return ExtractionFailure(error=exc.message)
        except BusinessError as exc:
            logger.warning(
                "Audio extraction failed",
                extra={"extra": {**log_ctx, "code": exc.code, "error": exc.message}},
            )
            return ExtractionFailure(error=f"Failed to extract audio: {exc.message}")
        except OSError as exc:
            logger.warning("Audio extraction failed", extra={"extra": {**log_ctx, "error": str(exc)}})
            return ExtractionFailure(error=f"Failed to extract audio: {exc}")
        except Exception as exc:
            logger.exception("Unexpected audio extraction error", extra={"extra": log_ctx})
            return ExtractionFailure(error=f"Failed to extract audio: {exc}")
        finally:
            remove_cookie_file(cookie_path)

    def _probe_duration(self, file_path: str) -> Optional[float]:
        """尽力获取时长，任何失败都返回 None。"""

        try:
            result = self._runner.run(
                self._settings.probe_bin,
                [
                    "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "default=noprint_wrappers=1:nokey=1",
                    file_path,
                ],
                timeout=self._settings.probe_timeout,
                max_output_bytes=PROBE_MAX_OUTPUT_BYTES,
            )
        except ProcessError as exc:
            logger.info(
                "Duration probe failed",
                extra={"extra": {"file_path": file_path, "error": exc.message}},
            )
            return None
        seconds = parse_probe_output(result.stdout)
        if seconds is None:
            logger.info("Duration probe output not numeric", extra={"extra": {"file_path": file_path}})
        return seconds
