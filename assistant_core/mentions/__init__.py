"""@mention 支持：行内语法编解码、候选搜索与输入框自动补全。"""
