"""交互式命令行：读取用户输入并驱动会话引擎。"""
