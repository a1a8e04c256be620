"""外部媒体工具（yt-dlp / ffprobe）的调用与音频提取编排。"""
