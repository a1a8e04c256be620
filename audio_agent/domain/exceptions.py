"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 Shell 层或工具层做统一捕获与用户提示。

错误分层：

- UpstreamServiceError 及其子类：LLM 服务调用失败，只允许回卷到单轮对话。
- ValidationError / SchemaValidationError：配置或工具参数校验失败。
- ProcessError 及其子类：外部进程（yt-dlp / ffprobe）执行失败。
- ArtifactNotFound：下载器看似成功，但没有找到新生成的音频文件。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "PROCESS_TIMEOUT"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 command、returncode 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class UpstreamServiceError(BusinessError):
    """LLM 服务调用失败的基类（网络、鉴权、限流、响应格式异常）。"""


class NetworkError(UpstreamServiceError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(UpstreamServiceError):
    """第三方 API 返回非 2xx/429 错误，或响应结构无法解析时抛出。"""


class RateLimitError(UpstreamServiceError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class SchemaValidationError(ValidationError):
    """工具调用参数不符合工具声明的 schema。"""


class ProcessError(BusinessError):
    """外部命令执行失败的基类。"""

    def __init__(self, code: str, message: str, command: str, **extra):
        super().__init__(code=code, message=message, command=command, **extra)
        self.command = command


class ProcessSpawnError(ProcessError):
    """可执行文件不存在或无法启动。"""


class ProcessTimeout(ProcessError):
    """超过截止时间，子进程已被终止。"""


class ProcessExitError(ProcessError):
    """子进程以非零状态码退出。"""

    def __init__(self, message: str, command: str, returncode: int, output: Optional[str] = None):
        super().__init__(
            code="PROCESS_EXIT_ERROR",
            message=message,
            command=command,
            returncode=returncode,
        )
        self.returncode = returncode
        self.output = output or ""


class ArtifactNotFound(BusinessError):
    """下载完成后输出目录中没有新的音频文件。"""
