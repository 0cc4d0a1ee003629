"""配置常量模块 -- 可通过环境变量覆盖

包含数据目录、数据库路径，以及 prompt 构建相关的可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("ITERLOOP_DATA_DIR", ".iterloop"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "ITERLOOP_DB_PATH",
        str(_get_base_dir() / "sqlite" / "events.db"),
    )


# prompt 中 history 区块包含的最近迭代摘要数
ITERATION_HISTORY_LIMIT: int = int(os.environ.get("ITERLOOP_ITERATION_HISTORY_LIMIT", "5"))

# 日志中文本预览截断长度
TEXT_PREVIEW_LENGTH: int = 200
