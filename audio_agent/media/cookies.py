"""站点会话 cookie 的临时落盘。

部分站点（目前是 Bilibili）的受限内容需要登录态。若配置中提供了对应的
会话凭据，且 URL 属于该站点，就在输出目录下写一个 Netscape 格式的 cookie
文件交给下载器；没有凭据时直接跳过，不视为错误。
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import urlparse
import os
import tempfile

from audio_agent.infrastructure.logging.logger import logger


NETSCAPE_HEADER = "# Netscape HTTP Cookie File\n"


@dataclass(frozen=True)
class CookieSite:
    """一个需要会话 cookie 的站点。"""

    name: str
    hosts: Tuple[str, ...]
    cookie_domain: str
    cookie_name: str
    setting: str  # Settings 上保存凭据的字段名

    def matches(self, url: str) -> bool:
        try:
            host = (urlparse(url).hostname or "").lower()
        except ValueError:
            return False
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    def cookie_line(self, value: str) -> str:
        return f"{self.cookie_domain}\tTRUE\t/\tFALSE\t0\t{self.cookie_name}\t{value}\n"


COOKIE_SITES: Tuple[CookieSite, ...] = (
    CookieSite(
        name="bilibili",
        hosts=("bilibili.com", "b23.tv"),
        cookie_domain=".bilibili.com",
        cookie_name="SESSDATA",
        setting="bilibili_sessdata",
    ),
)


def find_cookie_site(url: str) -> Optional[CookieSite]:
    for site in COOKIE_SITES:
        if site.matches(url):
            return site
    return None


def stage_cookie_file(url: str, output_dir: Path, settings: Any) -> Optional[Path]:
    """按需写出临时 cookie 文件，返回其路径；不需要时返回 None。

    文件名带随机后缀，同一目录下的多次提取不会互相覆盖。
    """

    site = find_cookie_site(url)
    if site is None:
        return None
    value = (getattr(settings, site.setting, None) or "").strip()
    if not value:
        logger.info(
            "No session credential for site, continuing without cookies",
            extra={"extra": {"site": site.name}},
        )
        return None
    fd, raw_path = tempfile.mkstemp(prefix=".cookies-", suffix=".txt", dir=str(output_dir))
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(NETSCAPE_HEADER)
        fh.write(site.cookie_line(value))
    logger.info("Staged cookie file", extra={"extra": {"site": site.name}})
    return Path(raw_path)


def remove_cookie_file(path: Optional[Path]) -> None:
    """尽力删除 cookie 文件，失败只记录日志。"""

    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(
            "Failed to remove cookie file",
            extra={"extra": {"path": str(path), "error": str(exc)}},
        )
