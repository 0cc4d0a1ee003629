"""CLI 入口模块 -- python -m iterloop.orchestrator run [options]

SIGINT / SIGTERM 触发 Orchestrator.stop()；循环正常结束（会话完成、
达到迭代上限或收到停止信号）时退出码为 0，Runner 无法启动时为 1。
"""

import argparse
import asyncio
import signal
import sys

import structlog

from .config import OrchestratorConfig, load_orchestrator_config
from .logging_config import LOG_FORMATS, setup_logging
from .main import create_runtime
from .services.orchestrator import ExitReason

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m iterloop.orchestrator")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="运行迭代循环")
    run.add_argument("--session", "-s", help="会话名称")
    run.add_argument("--spec", dest="spec_path", help="spec 文件路径")
    run.add_argument("--template", dest="template_path", help="自定义 prompt 模板")
    run.add_argument("--extra", dest="extra_instructions", help="附加指令")
    run.add_argument("--max-iterations", "-n", type=int, help="最大迭代次数，0 表示不限")
    run.add_argument("--work-dir", help="工作目录（默认当前目录）")
    run.add_argument("--auto-commit", action="store_true", default=None, help="自动提交文件变更")
    run.add_argument("--log-level", help="日志级别（默认 INFO）")
    run.add_argument("--log-format", choices=LOG_FORMATS, help="日志格式")
    return parser


async def run_loop(config: OrchestratorConfig) -> int:
    async with create_runtime(config) as runtime:
        orchestrator = runtime.orchestrator
        loop = asyncio.get_running_loop()
        stop_tasks: set[asyncio.Task] = set()

        def _request_stop(signame: str) -> None:
            log.info("stop_signal_received", signal=signame)
            task = loop.create_task(orchestrator.stop())
            stop_tasks.add(task)
            task.add_done_callback(stop_tasks.discard)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop, sig.name)
        try:
            reason = await orchestrator.run()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        await asyncio.gather(*stop_tasks, return_exceptions=True)

    return 1 if reason == ExitReason.ERROR else 0


def main() -> None:
    """CLI 主入口"""
    args = build_parser().parse_args()
    if args.command == "run":
        config = load_orchestrator_config(
            work_dir=args.work_dir,
            session=args.session,
            spec_path=args.spec_path,
            template_path=args.template_path,
            extra_instructions=args.extra_instructions,
            max_iterations=args.max_iterations,
            auto_commit=args.auto_commit,
            log_level=args.log_level,
            log_format=args.log_format,
        )
        setup_logging(config.log_format, config.log_level)
        sys.exit(asyncio.run(run_loop(config)))


if __name__ == "__main__":
    main()
