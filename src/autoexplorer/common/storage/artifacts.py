"""探索产物存储

每次运行写入 <base>/<app>/<crawl_id>/：
- sitemap.json / knowledge-graph.json / statistics.json / patterns.json / metadata.json
- exploration.log（JSON Lines 事件日志）
- REPORT.md（人类可读的摘要）
"""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from ..exceptions import ArtifactNotFoundError, StorageError
from ..logger import get_logger

logger = get_logger(__name__)

SITEMAP_FILE = "sitemap.json"
KNOWLEDGE_GRAPH_FILE = "knowledge-graph.json"
STATISTICS_FILE = "statistics.json"
PATTERNS_FILE = "patterns.json"
METADATA_FILE = "metadata.json"
EXPLORATION_LOG_FILE = "exploration.log"
REPORT_FILE = "REPORT.md"

ARTIFACT_FILES = {
    "sitemap": SITEMAP_FILE,
    "knowledge_graph": KNOWLEDGE_GRAPH_FILE,
    "statistics": STATISTICS_FILE,
    "patterns": PATTERNS_FILE,
    "metadata": METADATA_FILE,
}


def generate_crawl_id() -> str:
    """crawl_<日期>_<随机串>"""
    return f"crawl_{datetime.now().strftime('%Y-%m-%d')}_{uuid.uuid4().hex[:9]}"


def sanitize_name(value: str, max_length: int = 100) -> str:
    """把 URL / 应用名转换为安全的文件名"""
    value = re.sub(r"^https?://", "", value)
    value = re.sub(r"[^a-z0-9]+", "_", value, flags=re.IGNORECASE).strip("_").lower()
    return value[:max_length] or "app"


def _dump_json(path: Path, data: Any) -> None:
    try:
        path.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
    except OSError as e:
        raise StorageError(f"写入失败: {path}: {e}") from e


class ArtifactStorage:
    """单次运行的产物目录"""

    def __init__(
        self,
        app_name: str,
        app_url: str,
        base_path: str | Path = "runs",
        crawl_id: str | None = None,
    ):
        self.app_name = app_name
        self.app_url = app_url
        self.crawl_id = crawl_id or generate_crawl_id()
        self.created_at = datetime.now()
        self.run_dir = Path(base_path) / sanitize_name(app_name) / self.crawl_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[存储] 产物目录: %s", self.run_dir)

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(),
            "app_name": self.app_name,
            "app_url": self.app_url,
            "crawl_id": self.crawl_id,
        }

    def _save(self, filename: str, data: Any, label: str) -> Path:
        path = self.run_dir / filename
        _dump_json(path, data)
        logger.info("[存储] %s 已保存: %s", label, path)
        return path

    def save_sitemap(self, sitemap: dict[str, Any]) -> Path:
        return self._save(SITEMAP_FILE, sitemap, "站点地图")

    def save_knowledge_graph(self, graph: dict[str, Any]) -> Path:
        return self._save(KNOWLEDGE_GRAPH_FILE, graph, "知识图谱")

    def save_statistics(self, stats: dict[str, Any]) -> Path:
        return self._save(STATISTICS_FILE, stats, "统计")

    def save_patterns(self, patterns: list[dict[str, Any]] | dict[str, Any]) -> Path:
        return self._save(PATTERNS_FILE, patterns, "页面模式")

    def save_metadata(self, extra: dict[str, Any] | None = None) -> Path:
        return self._save(METADATA_FILE, {**self.metadata, **(extra or {})}, "元数据")

    def append_exploration_log(self, event: str, **fields: Any) -> None:
        """追加一行 JSON 事件日志"""
        entry = {"timestamp": datetime.now().isoformat(), "event": event, **fields}
        path = self.run_dir / EXPLORATION_LOG_FILE
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            raise StorageError(f"写入失败: {path}: {e}") from e

    def create_summary_report(self, summary: dict[str, Any]) -> str:
        """写入 REPORT.md 并返回报告内容"""
        lines = [
            "# Exploration Report",
            "",
            f"**Application:** {self.app_name}",
            f"**URL:** {self.app_url}",
            f"**Crawl ID:** {self.crawl_id}",
            f"**Created:** {self.created_at.isoformat()}",
            "",
            "## Summary",
            "",
        ]
        for key, value in summary.items():
            if isinstance(value, (dict, list)):
                continue
            lines.append(f"- **{key}:** {value}")

        features = summary.get("features") or []
        if features:
            lines += ["", "## Features", "", "| Feature | Status | Pages | Actions |", "|---|---|---|---|"]
            for feature in features:
                lines.append(
                    f"| {feature.get('name', '')} | {feature.get('status', '')} "
                    f"| {feature.get('page_count', 0)} | {feature.get('action_count', 0)} |"
                )

        lines += [
            "",
            "## Artifacts",
            "",
            f"- {SITEMAP_FILE} - page structure",
            f"- {KNOWLEDGE_GRAPH_FILE} - feature relationships",
            f"- {STATISTICS_FILE} - exploration statistics",
            f"- {PATTERNS_FILE} - detected page patterns",
            f"- {METADATA_FILE} - run metadata",
            f"- {EXPLORATION_LOG_FILE} - event log",
        ]
        report = "\n".join(lines) + "\n"

        path = self.run_dir / REPORT_FILE
        try:
            path.write_text(report, encoding="utf-8")
        except OSError as e:
            raise StorageError(f"写入失败: {path}: {e}") from e
        logger.info("[存储] 报告已生成: %s", path)
        return report

    def list_artifacts(self) -> dict[str, Any]:
        """列出产物目录下的文件、子目录和总大小"""
        files: list[str] = []
        directories: list[str] = []
        total_size = 0
        for path in sorted(self.run_dir.rglob("*")):
            relative = str(path.relative_to(self.run_dir))
            if path.is_dir():
                directories.append(relative)
            else:
                files.append(relative)
                total_size += path.stat().st_size
        return {"files": files, "directories": directories, "total_size": total_size}


def load_artifacts(run_dir: str | Path) -> dict[str, Any]:
    """读取某次运行的 JSON 产物；缺失的文件不出现在结果中

    Raises:
        ArtifactNotFoundError: 目录不存在
        StorageError: JSON 文件损坏
    """
    run_dir = Path(run_dir)
    if not run_dir.is_dir():
        raise ArtifactNotFoundError(str(run_dir))

    artifacts: dict[str, Any] = {}
    for key, filename in ARTIFACT_FILES.items():
        path = run_dir / filename
        if not path.exists():
            continue
        try:
            artifacts[key] = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StorageError(f"产物文件损坏: {path}: {e}") from e
    return artifacts
