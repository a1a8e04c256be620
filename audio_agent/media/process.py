"""外部命令执行封装。

ProcessRunner 以参数列表（而非拼接的 shell 字符串）启动子进程，
等待至超时，并限制捕获输出的总大小。失败统一抛出 ProcessError 子类：

- ProcessSpawnError: 可执行文件不存在 / 无权限。
- ProcessTimeout: 超时，子进程已被 kill。
- ProcessExitError: 非零退出码。

输出边读边裁剪，每个流在内存中最多保留 max_output_bytes 字节的尾部，
子进程输出再多也不会撑爆内存。
"""

from dataclasses import dataclass
from typing import IO, Optional, Sequence, Tuple
import subprocess
import threading

from audio_agent.domain.exceptions import ProcessExitError, ProcessSpawnError, ProcessTimeout
from audio_agent.infrastructure.logging.logger import logger


ERROR_TAIL_CHARS = 500
READ_CHUNK_BYTES = 64 * 1024
# kill 之后等待读线程退出的时间；孙进程可能仍持有管道
READER_JOIN_SECONDS = 5.0


@dataclass
class ProcessResult:
    """子进程成功结束后的捕获结果。"""

    command: str
    returncode: int
    stdout: str
    stderr: str
    truncated: bool = False

    @property
    def output(self) -> str:
        """stdout 与 stderr 拼接后的文本，供调用方做文本解析。"""

        return self.stdout + self.stderr


class TailBuffer:
    """只保留最近 limit 字节的缓冲区。"""

    def __init__(self, limit: int):
        self._limit = limit
        self._buf = bytearray()
        self.overflowed = False

    def feed(self, chunk: bytes) -> None:
        self._buf.extend(chunk)
        excess = len(self._buf) - self._limit
        if excess > 0:
            del self._buf[:excess]
            self.overflowed = True

    def getvalue(self) -> bytes:
        return bytes(self._buf)


def _drain(stream: IO[bytes], buf: TailBuffer) -> None:
    try:
        for chunk in iter(lambda: stream.read(READ_CHUNK_BYTES), b""):
            buf.feed(chunk)
    finally:
        stream.close()


def _cap_output(stdout: bytes, stderr: bytes, max_bytes: int) -> Tuple[bytes, bytes, bool]:
    """把 stdout+stderr 限制在 max_bytes 以内，保留各自的尾部。

    下载器的进度输出很长，真正有用的信息（错误、目标文件）通常在末尾。
    """

    total = len(stdout) + len(stderr)
    if total <= max_bytes:
        return stdout, stderr, False
    stderr_budget = min(len(stderr), max_bytes // 2)
    stdout_budget = max_bytes - stderr_budget
    if stdout_budget > len(stdout):
        stderr_budget += stdout_budget - len(stdout)
        stdout_budget = len(stdout)
    return (
        stdout[len(stdout) - stdout_budget:],
        stderr[len(stderr) - stderr_budget:],
        True,
    )


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class ProcessRunner:
    """同步执行外部命令。"""

    def run(
        self,
        command: str,
        args: Sequence[str],
        timeout: float,
        max_output_bytes: int,
    ) -> ProcessResult:
        argv = [command, *[str(a) for a in args]]
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessSpawnError(
                code="PROCESS_SPAWN_ERROR",
                message=f"Cannot start {command}: {exc.strerror or exc}",
                command=command,
            ) from exc

        out_buf = TailBuffer(max_output_bytes)
        err_buf = TailBuffer(max_output_bytes)
        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, out_buf), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, err_buf), daemon=True),
        ]
        for reader in readers:
            reader.start()
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            proc.kill()
            proc.wait()
            for reader in readers:
                reader.join(READER_JOIN_SECONDS)
            raise ProcessTimeout(
                code="PROCESS_TIMEOUT",
                message=f"{command} timed out after {timeout:g}s",
                command=command,
                timeout=timeout,
            ) from exc
        for reader in readers:
            reader.join()

        stdout, stderr, truncated = _cap_output(out_buf.getvalue(), err_buf.getvalue(), max_output_bytes)
        truncated = truncated or out_buf.overflowed or err_buf.overflowed
        if truncated:
            logger.warning(
                "Process output truncated",
                extra={"extra": {"command": command, "max_output_bytes": max_output_bytes}},
            )
        result = ProcessResult(
            command=command,
            returncode=returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            truncated=truncated,
        )
        if returncode != 0:
            tail = (result.stderr.strip() or result.stdout.strip())[-ERROR_TAIL_CHARS:]
            message = f"{command} exited with status {returncode}"
            if tail:
                message = f"{message}: {tail}"
            raise ProcessExitError(
                message=message,
                command=command,
                returncode=returncode,
                output=result.output,
            )
        return result
