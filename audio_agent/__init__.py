"""Audio Agent 顶层包。

该包让一个基于 LLM 的对话助手通过工具调用从在线视频中提取音频，
包括配置加载、领域模型、Provider 适配、extract_audio 工具、
外部进程编排（yt-dlp / ffprobe）以及会话引擎与交互式命令行。
"""

from audio_agent.agents.engine import ConversationEngine, EngineConfig, SessionState
from audio_agent.media.extractor import AudioExtractor

__all__ = ["AudioExtractor", "ConversationEngine", "EngineConfig", "SessionState"]
