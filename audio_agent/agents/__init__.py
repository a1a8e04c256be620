"""会话引擎：模型⇄工具循环与会话状态机。"""
