"""生命周期 hook -- 配置模型与 shell 执行器

hook 在会话开始/结束、每次迭代前后、任务完成、迭代出错时执行。
命令中的 {{session}} {{iteration}} {{task_id}} {{task_content}} {{error}}
在执行前展开（值经 shell 转义）。
失败与超时不抛异常，以文本形式出现在该 hook 的输出中。
"""

import asyncio
import re
import shlex
from pathlib import Path
from typing import Protocol

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

log = structlog.get_logger()

DEFAULT_HOOK_TIMEOUT_S = 30

# 默认 hook 配置文件（位于工作目录）
HOOKS_FILE_NAME = ".iterloop.hooks.yml"

_VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class HookConfig(BaseModel):
    """单个 hook"""

    command: str = Field(min_length=1, description="shell 命令")
    timeout: int = Field(default=DEFAULT_HOOK_TIMEOUT_S, ge=1, description="超时（秒）")
    pipe_output: bool = Field(default=False, description="输出是否送入下一次 prompt")


class HooksConfig(BaseModel):
    """全部生命周期 hook"""

    session_start: list[HookConfig] = Field(default_factory=list)
    pre_iteration: list[HookConfig] = Field(default_factory=list)
    post_iteration: list[HookConfig] = Field(default_factory=list)
    on_task_complete: list[HookConfig] = Field(default_factory=list)
    on_error: list[HookConfig] = Field(default_factory=list)
    session_end: list[HookConfig] = Field(default_factory=list)


class HookVariables(BaseModel):
    """命令模板变量"""

    session: str = ""
    iteration: int = 0
    task_id: str = ""
    task_content: str = ""
    error: str = ""

    def expand(self, command: str) -> str:
        """展开 {{name}} 占位符，未知名称保持原样"""
        values = self.model_dump()

        def _sub(match: re.Match) -> str:
            name = match.group(1)
            if name not in values:
                return match.group(0)
            return shlex.quote(str(values[name]))

        return _VARIABLE_PATTERN.sub(_sub, command)


class HookExecutor(Protocol):
    """hook 执行协作方"""

    async def execute_all(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        """依次执行全部 hook，返回所有输出"""
        ...

    async def execute_all_piped(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        """依次执行全部 hook，仅返回 pipe_output=True 的输出"""
        ...


def load_hooks_config(path: str | Path) -> HooksConfig:
    """从 YAML 文件加载 hook 配置

    文件格式：
        version: 1
        hooks:
          pre_iteration:
            - command: "git status --short"
              pipe_output: true

    文件不存在返回空配置；解析或校验失败记录警告并返回空配置。
    """
    path = Path(path)
    if not path.exists():
        return HooksConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        hooks = data.get("hooks", {}) if isinstance(data, dict) else {}
        return HooksConfig.model_validate(hooks or {})
    except (yaml.YAMLError, ValidationError, AttributeError) as e:
        log.warning(
            "hooks_config_invalid",
            path=str(path),
            error_type=e.__class__.__name__,
            error=str(e),
        )
        return HooksConfig()


class ShellHookExecutor:
    """通过 /bin/sh 执行 hook，stdout 与 stderr 合并为输出"""

    async def run(self, hook: HookConfig, work_dir: str, variables: HookVariables) -> str:
        """执行单个 hook

        取消时终止子进程并继续抛出 CancelledError。
        """
        command = variables.expand(hook.command)
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=work_dir,
            )
        except OSError as e:
            log.warning("hook_spawn_failed", command=command, error_type=e.__class__.__name__)
            return f"[hook failed to start: {command}: {e}]\n"

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=hook.timeout)
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            log.warning("hook_timeout", command=command, timeout=hook.timeout)
            return f"[hook timed out after {hook.timeout}s: {command}]\n"
        except asyncio.CancelledError:
            _kill(proc)
            await proc.wait()
            raise

        output = stdout.decode(errors="replace")
        if proc.returncode != 0:
            log.warning("hook_failed", command=command, returncode=proc.returncode)
            output += f"[hook exited with status {proc.returncode}: {command}]\n"
        else:
            log.debug("hook_completed", command=command, output_length=len(output))
        return output

    async def execute_all(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        outputs = [await self.run(hook, work_dir, variables) for hook in hooks]
        return "\n".join(output for output in outputs if output)

    async def execute_all_piped(
        self, hooks: list[HookConfig], work_dir: str, variables: HookVariables
    ) -> str:
        outputs = []
        for hook in hooks:
            output = await self.run(hook, work_dir, variables)
            if hook.pipe_output and output:
                outputs.append(output)
        return "\n".join(outputs)


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
