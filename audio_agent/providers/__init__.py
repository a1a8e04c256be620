"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供厂商的具体实现 (kimi_client)。
"""

from typing import Any, Callable, Dict, Optional

from audio_agent.domain.exceptions import ValidationError
from audio_agent.providers.base import ProviderClient
from audio_agent.providers.kimi_client import KimiClient
from audio_agent.providers.registry import get_provider_config


# registry 中登记的 Provider 名 -> 客户端实现
PROVIDER_CLIENTS: Dict[str, Callable[[Any], ProviderClient]] = {
    "kimi": KimiClient,
}


def create_provider(settings: Any, name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。

    名称先经 registry 解析（不区分大小写）；缺少凭据时立即抛出
    ValidationError，不等到第一次调用才失败。
    """

    provider_name = name or getattr(settings, "default_provider", "kimi")
    try:
        config = get_provider_config(provider_name)
    except KeyError:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")
    client_cls = PROVIDER_CLIENTS.get(config.name)
    if client_cls is None:
        raise ValidationError(code="UNKNOWN_PROVIDER", message=f"No client for provider: {config.name}")
    return client_cls(settings)
