"""CLI 入口模块 -- python -m iterloop.core <command>

支持的命令：
  sessions           列出数据库中的会话
  replay <session>   重放事件并输出会话状态
"""

import asyncio
import sys

from .config import TEXT_PREVIEW_LENGTH, get_db_path
from .models.enums import TaskStatus
from .projection import next_task, rebuild, tasks_by_status
from .store import create_event_store

_USAGE = """用法: python -m iterloop.core <command>
命令:
  sessions           列出数据库中的会话
  replay <session>   重放事件并输出会话状态"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "sessions":
        asyncio.run(list_sessions())
    elif command == "replay" and len(sys.argv) >= 3:
        asyncio.run(replay_session(sys.argv[2]))
    else:
        print(f"未知命令: {' '.join(sys.argv[1:])}")
        print(_USAGE)
        sys.exit(1)


async def list_sessions() -> None:
    event_store = await create_event_store(get_db_path())
    try:
        for name in await event_store.list_sessions():
            print(name)
    finally:
        await event_store.close()


async def replay_session(session: str) -> None:
    """重放指定会话并打印任务概要"""
    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    event_store = await create_event_store(db_path)
    try:
        state = await rebuild(event_store, session)
    finally:
        await event_store.close()

    groups = tasks_by_status(state)
    print(f"会话: {session} (last_event_id={state.last_event_id})")
    print(
        "任务: "
        + ", ".join(f"{status.value}={len(groups[status])}" for status in TaskStatus)
    )
    for status in TaskStatus:
        for task in groups[status]:
            deps = f" deps={','.join(task.dependencies)}" if task.dependencies else ""
            content = task.content[:TEXT_PREVIEW_LENGTH]
            print(f"  [{status.value}] P{task.priority} {task.id} {content}{deps}")
    print(f"笔记: {len(state.notes)}  迭代: {len(state.iterations)}")

    upcoming = next_task(state)
    if upcoming is not None:
        print(f"下一个任务: {upcoming.id} {upcoming.content}")
    if state.control.complete:
        print("会话已完成")
    elif state.control.paused:
        print("会话已暂停")


if __name__ == "__main__":
    main()
