import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(settings: Any) -> logging.Logger:
    """按配置挂载 JSON 文件 handler；由入口在读取配置后调用。"""

    logger = logging.getLogger("audio_agent")
    logger.setLevel(logging.INFO)
    # 同一进程内重复调用时不重复挂 handler
    if any(getattr(h, "_audio_agent", False) for h in logger.handlers):
        return logger
    log_dir = Path(getattr(settings, "log_dir", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "agent.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter(redact=getattr(settings, "log_redact_content", False)))
    fh._audio_agent = True  # type: ignore[attr-defined]
    logger.addHandler(fh)
    logger.propagate = False
    return logger


logger = logging.getLogger("audio_agent")
