"""Core 异常体系"""


class StoreError(Exception):
    """Session Store 基础异常（存储不可用等）"""


class TaskNotFoundError(StoreError):
    """引用了不存在的任务 ID"""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class SessionIncompleteError(StoreError):
    """仍有未完成任务时尝试标记会话完成"""

    def __init__(self, outstanding: list[tuple[str, str]]) -> None:
        """
        Args:
            outstanding: 未完成任务的 (task_id, content) 列表，按创建顺序
        """
        lines = [f"{task_id} ({content})" for task_id, content in outstanding]
        super().__init__(
            f"cannot complete session: {len(outstanding)} task(s) not completed: "
            + ", ".join(lines)
        )
        self.outstanding = outstanding
