"""自动提交 -- 迭代产生文件变更后提交到 git

提交失败只记录日志，不影响迭代循环。
"""

import asyncio
from typing import Protocol

import structlog

log = structlog.get_logger()

GIT_TIMEOUT_S = 60


class Committer(Protocol):
    """自动提交协作方"""

    async def commit(self, work_dir: str, paths: list[str], message: str) -> bool:
        """提交 paths 的变更，成功返回 True"""
        ...


class GitCommitter:
    """git add <paths> && git commit -m <message>"""

    def __init__(self, git: str = "git", timeout_s: float = GIT_TIMEOUT_S) -> None:
        self._git = git
        self._timeout_s = timeout_s

    async def commit(self, work_dir: str, paths: list[str], message: str) -> bool:
        if not paths:
            return False
        ok, output = await self._run(work_dir, "add", "--", *paths)
        if not ok:
            log.warning("git_add_failed", work_dir=work_dir, output=output.strip())
            return False
        ok, output = await self._run(work_dir, "commit", "-m", message)
        if not ok:
            log.warning("git_commit_failed", work_dir=work_dir, output=output.strip())
            return False
        log.info("git_commit_created", work_dir=work_dir, files=len(paths))
        return True

    async def _run(self, work_dir: str, *args: str) -> tuple[bool, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                cwd=work_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return False, f"{e.__class__.__name__}: {e}"

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return False, f"git {args[0]} timed out after {self._timeout_s}s"
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        return proc.returncode == 0, stdout.decode(errors="replace")
