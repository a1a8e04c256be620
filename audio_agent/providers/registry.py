"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "audio-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "kimi-k2-thinking-turbo"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


# Kimi / Moonshot 配置
KIMI_CONFIG = ProviderConfig(
    name="kimi",
    base_url="https://api.moonshot.cn/v1",
    models={
        "audio-chat": ModelConfig(
            logical_name="audio-chat",
            provider_model="kimi-k2-thinking-turbo",
            max_tokens=16384,
            default_temperature=0.6,
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "kimi": KIMI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def get_model_config(provider: ProviderConfig, logical_name: str) -> ModelConfig:
    """查找逻辑模型；未登记时把名称当作厂商模型 ID 直接使用。"""

    if logical_name in provider.models:
        return provider.models[logical_name]
    return ModelConfig(
        logical_name=logical_name,
        provider_model=logical_name,
        max_tokens=8192,
        default_temperature=0.6,
    )
