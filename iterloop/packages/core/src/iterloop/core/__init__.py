"""iterloop Core -- 事件溯源会话模型

Session Store、事件模型与 Projection reducer。
"""
