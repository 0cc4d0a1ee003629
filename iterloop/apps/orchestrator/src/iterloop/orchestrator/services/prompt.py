"""Prompt 构建 -- 由会话 projection 渲染迭代 prompt

模板使用 {{session}} {{iteration}} {{history}} {{spec}} {{tasks}} {{notes}} {{extra}}
占位符；未出现的占位符不渲染，模板中的未知占位符保持原样。
"""

from pathlib import Path

from iterloop.core.config import ITERATION_HISTORY_LIMIT
from iterloop.core.models import NoteType, SessionState, TaskStatus
from iterloop.core.projection import next_task, notes_by_type, tasks_by_status

DEFAULT_TEMPLATE = """# iterloop Session
Session: {{session}} | Iteration: #{{iteration}}

{{history}}

## Spec
{{spec}}

{{tasks}}

{{notes}}

## Rules
- ONE task per iteration: complete it fully, then STOP
- Test changes before marking a task completed
- Record an iteration summary before stopping
- Mark the session complete only when ALL tasks are completed
- Keep tasks added by the user even if the spec does not mention them

## Workflow
1. Sync the task list with the spec: add missing tasks, fix outdated ones
2. Pick the next ready task (highest priority, all dependencies completed)
3. Mark it in_progress
4. Implement and test
5. Mark it completed
6. Write the iteration summary
7. STOP

## If Stuck
- Add a note of type "stuck" describing the problem
- Mark the task blocked, or set its dependencies if another task must go first
{{extra}}"""

# 渲染顺序即展示顺序
_STATUS_SECTIONS = (
    (TaskStatus.IN_PROGRESS, "In progress"),
    (TaskStatus.REMAINING, "Remaining"),
    (TaskStatus.BLOCKED, "Blocked"),
    (TaskStatus.COMPLETED, "Completed"),
)


def load_template(path: str | Path | None) -> str:
    """读取自定义模板，None 返回内置模板"""
    if path is None:
        return DEFAULT_TEMPLATE
    return Path(path).read_text(encoding="utf-8")


def render(template: str, variables: dict[str, str]) -> str:
    """替换 {{name}} 占位符"""
    result = template
    for name, value in variables.items():
        result = result.replace("{{" + name + "}}", value)
    return result


def format_tasks(state: SessionState) -> str:
    """按状态分组列出任务，并标出下一个可执行任务"""
    if not state.tasks:
        return "## Tasks\nNo tasks yet. Create tasks from the spec."

    groups = tasks_by_status(state)
    lines = ["## Tasks"]
    upcoming = next_task(state)
    if upcoming is not None:
        lines.append(f"Next ready task: [{upcoming.id}] {upcoming.content}")
    for status, title in _STATUS_SECTIONS:
        tasks = groups[status]
        if not tasks:
            continue
        lines.append(f"### {title}")
        for task in tasks:
            line = f"- [{task.id}] P{task.priority} {task.content}"
            if task.dependencies:
                line += f" (depends on: {', '.join(task.dependencies)})"
            lines.append(line)
    return "\n".join(lines)


def format_notes(state: SessionState) -> str:
    if not state.notes:
        return ""
    lines = ["## Notes"]
    for note_type in NoteType:
        for note in notes_by_type(state, note_type):
            lines.append(f"- [{note_type.value}] {note.content} (iteration {note.iteration})")
    return "\n".join(lines)


def format_history(state: SessionState, limit: int = ITERATION_HISTORY_LIMIT) -> str:
    """最近 limit 次迭代的摘要"""
    summaries = [record for _, record in sorted(state.iterations.items()) if record.summary]
    if not summaries or limit <= 0:
        return ""
    lines = ["## Recent Iterations"]
    for record in summaries[-limit:]:
        lines.append(f"- #{record.number}: {record.summary}")
    return "\n".join(lines)


def build_prompt(
    state: SessionState,
    iteration: int,
    template: str = DEFAULT_TEMPLATE,
    spec: str = "",
    extra: str = "",
    history_limit: int = ITERATION_HISTORY_LIMIT,
) -> str:
    """渲染单次迭代的 prompt

    Args:
        state: 当前会话 projection
        iteration: 即将执行的迭代序号
        template: 模板文本
        spec: spec 文件内容
        extra: 附加指令
        history_limit: history 区块包含的摘要数
    """
    return render(
        template,
        {
            "session": state.session,
            "iteration": str(iteration),
            "history": format_history(state, history_limit),
            "spec": spec or "(no spec provided)",
            "tasks": format_tasks(state),
            "notes": format_notes(state),
            "extra": f"\n## Extra Instructions\n{extra}" if extra else "",
        },
    )
