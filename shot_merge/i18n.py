"""Interface messages in English and Chinese.

A ``Messages`` instance is created once from the configured language and
handed to whatever needs to talk to the user.
"""

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"

_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        # ---- startup ----
        "app.title": "Shot Merge started",
        "app.workdir": "Work directory: {path}",
        "app.success": "Processing completed!",
        "app.error": "Processing failed: {error}",
        "app.watching": "Watching {path} for new files (Ctrl-C to stop)",
        "app.stopped": "Stopped watching.",
        # ---- processing ----
        "process.scanning": "Scanning {ext} files...",
        "process.found": "Found {count} {ext} files",
        "process.nofiles": "No {ext} files found",
        "dir.created": "Created working directories",
        "file.moved.processed": "Moved to processed: {name}",
        "file.moved.error": "Moved to error: {name} ({reason})",
        "file.skipped": "Skipped file: {name} ({reason})",
        "file.skipped.ratio": "Skipped error file: {name} (unsupported aspect ratio)",
        "file.skipped.remaining": "Skipped remaining file: {name} (unsupported aspect ratio)",
        "file.vanished": "File no longer exists: {name}",
        # ---- matching ----
        "match.checking": "Checking file pair: {lead} & {trail}",
        "match.size.different": "Different sizes: {lead} vs {trail}",
        "match.time.exceeded": "Time difference exceeds {limit} seconds: {delta:.1f}s",
        "match.ratio.unsupported": "Unsupported aspect ratio: {ratio}",
        "match.ratio.invalid": "Invalid aspect ratio: {ratio} (allowed ratios: {allowed}) - skipping",
        "match.success": "Match successful",
        # ---- merging ----
        "merge.success": "Merge completed: {name}",
        "merge.success.pair": "Successfully merged: {lead} + {trail}",
        # ---- statistics ----
        "stats.title": "Processing statistics:",
        "stats.total": "Total files: {count}",
        "stats.merged": "Successfully merged: {count}",
        "stats.errors": "Error files: {count}",
        "stats.processed": "Pairs evaluated: {count}",
        # ---- errors ----
        "error.scan": "Failed to scan {ext} files: {error}",
        "error.size": "Failed to get image size: {error}",
        "error.timestamp": "Failed to read creation time: {error}",
        "error.merge": "Failed to merge images: {error}",
        "error.processing": "Processing error: {error}",
        "error.remaining.single": "Single file remaining in queue",
        # ---- command line ----
        "cli.description": "Shot Merge - pairs screenshots and stamps one corner onto the other",
        "cli.option.workdir": "Work directory path",
        "cli.option.verbose": "Show verbose output",
        "cli.option.lang": "Interface language (zh|en|auto)",
    },
    "zh": {
        "app.title": "图片合并工具启动",
        "app.workdir": "工作目录: {path}",
        "app.success": "处理完成!",
        "app.error": "处理失败: {error}",
        "app.watching": "正在监视 {path} 中的新文件 (按 Ctrl-C 停止)",
        "app.stopped": "已停止监视。",
        "process.scanning": "开始扫描{ext}文件...",
        "process.found": "找到 {count} 个{ext}文件",
        "process.nofiles": "未找到{ext}文件",
        "dir.created": "创建必要目录",
        "file.moved.processed": "移动到processed: {name}",
        "file.moved.error": "移动到error: {name} ({reason})",
        "file.skipped": "跳过文件: {name} ({reason})",
        "file.skipped.ratio": "跳过错误文件: {name} (宽高比不符合要求)",
        "file.skipped.remaining": "跳过剩余文件: {name} (宽高比不符合要求)",
        "file.vanished": "文件已不存在: {name}",
        "match.checking": "检查文件对: {lead} & {trail}",
        "match.size.different": "尺寸不同: {lead} vs {trail}",
        "match.time.exceeded": "时间差超过{limit}秒: {delta:.1f}秒",
        "match.ratio.unsupported": "宽高比不支持: {ratio}",
        "match.ratio.invalid": "宽高比不符合要求: {ratio} (允许的比例: {allowed}) - 跳过处理",
        "match.success": "匹配成功",
        "merge.success": "合并完成: {name}",
        "merge.success.pair": "成功合并: {lead} + {trail}",
        "stats.title": "处理统计:",
        "stats.total": "总文件数: {count}",
        "stats.merged": "成功合并: {count}",
        "stats.errors": "错误文件: {count}",
        "stats.processed": "已处理: {count}",
        "error.scan": "扫描{ext}文件失败: {error}",
        "error.size": "获取图片尺寸失败: {error}",
        "error.timestamp": "获取创建时间失败: {error}",
        "error.merge": "合并图片失败: {error}",
        "error.processing": "处理错误: {error}",
        "error.remaining.single": "队列中剩余单个文件",
        "cli.description": "图片合并工具 - 自动配对截图并合并右下角区域",
        "cli.option.workdir": "工作目录路径",
        "cli.option.verbose": "显示详细输出",
        "cli.option.lang": "界面语言 (zh|en|auto)",
    },
}


def detect_language(lang: str = "auto") -> str:
    """Resolve *lang* to a supported code, reading the locale for ``auto``."""
    if lang in _MESSAGES:
        return lang
    if lang != "auto":
        logger.warning("Unsupported language %r; using %s.", lang, DEFAULT_LANGUAGE)
        return DEFAULT_LANGUAGE
    for var in ("LC_ALL", "LC_MESSAGES", "LANG", "LANGUAGE"):
        value = os.environ.get(var)
        if value:
            return "zh" if value.lower().startswith("zh") else DEFAULT_LANGUAGE
    return DEFAULT_LANGUAGE


class Messages:
    """Looks up and formats interface strings for one language."""

    def __init__(self, language: str = "auto") -> None:
        self.language = detect_language(language)
        self._table = _MESSAGES[self.language]

    def t(self, key: str, **kwargs) -> str:
        """Return the message for *key* formatted with *kwargs*.

        Unknown keys are returned as-is.
        """
        template = self._table.get(key) or _MESSAGES[DEFAULT_LANGUAGE].get(key)
        if template is None:
            return key
        return template.format(**kwargs) if kwargs else template
