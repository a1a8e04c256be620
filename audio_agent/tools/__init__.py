"""工具系统：工具描述、参数校验与按名称分发。"""
