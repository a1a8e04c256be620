"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- extraction: 音频提取请求与带标签的结果类型。
- exceptions: 业务异常类型定义。
"""
