"""iterloop Orchestrator -- 迭代循环、hook、UI 消息与运行时装配"""
