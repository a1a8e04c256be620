"""系统提示词加载工具。

按 Agent 类型和语言(locale) 从 prompts/<locale>/ 目录读取对应的
system prompt 文本，用于构造 ChatMessage(role="system")。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(agent_type: str = "audio_extractor", locale: str = "en") -> str:
    """根据 Agent 类型和语言加载系统提示词文本。"""

    fname = PROMPTS_DIR / locale / f"{agent_type}_system.md"
    return fname.read_text(encoding="utf-8").strip()
