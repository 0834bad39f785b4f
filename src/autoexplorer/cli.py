"""CLI 入口"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .common.config import config
from .common.exceptions import AutoExplorerError
from .common.logger import get_logger
from .common.storage.artifacts import ArtifactStorage, load_artifacts

# 日志器
logger = get_logger(__name__)

app = typer.Typer(
    name="autoexplorer",
    help="AutoExplorer CLI - Web 应用自动探索工具",
    add_completion=False,
)
console = Console()


async def _run_exploration(
    url: str,
    app_name: str | None,
    output_dir: str,
    headless: bool,
    credentials: tuple[str, str] | None,
    max_pages: int | None,
    max_depth: int | None,
    parallel: int | None,
):
    # 延迟导入：report / path 命令不需要浏览器和 LLM 依赖
    from .common.llm.judge import DecisionJudge
    from .common.llm.oracle import LLMDecisionOracle
    from .explore.provider import PlaywrightProvider
    from .explore.runner import ExplorationRunner

    judge = DecisionJudge(LLMDecisionOracle())
    storage = ArtifactStorage(app_name or url, url, base_path=output_dir)

    async with PlaywrightProvider(headless=headless) as provider:
        runner = ExplorationRunner(
            url,
            provider,
            judge,
            app_name=app_name,
            storage=storage,
            credentials=credentials,
            max_pages_per_feature=max_pages,
            max_depth=max_depth,
            max_parallel_features=parallel,
        )
        return await runner.run()


def _build_features_table(features: list[dict]) -> Table:
    """构建功能概览表格"""
    table = Table(title="功能")
    table.add_column("id", style="cyan")
    table.add_column("name", style="green")
    table.add_column("status", style="magenta")
    table.add_column("pages", justify="right")
    table.add_column("actions", justify="right")

    for feature in features:
        table.add_row(
            str(feature.get("id", "")),
            str(feature.get("name", "")),
            str(feature.get("status", "")),
            str(feature.get("page_count", 0)),
            str(feature.get("action_count", 0)),
        )
    return table


@app.command("explore")
def explore_command(
    url: str = typer.Argument(..., help="应用入口 URL"),
    app_name: str | None = typer.Option(None, "--app-name", "-n", help="应用名称（默认取域名）"),
    output_dir: str = typer.Option(config.storage.output_dir, "--output", "-o", help="输出目录"),
    headless: bool = typer.Option(
        config.browser.headless,
        "--headless/--no-headless",
        help="是否使用无头模式",
    ),
    username: str | None = typer.Option(
        None, "--username", "-u", help="登录用户名（也可用 EXPLORER_USERNAME）"
    ),
    password: str | None = typer.Option(
        None, "--password", "-p", help="登录密码（也可用 EXPLORER_PASSWORD）"
    ),
    max_pages: int | None = typer.Option(None, "--max-pages", help="单个功能最多探索的页面数"),
    max_depth: int | None = typer.Option(None, "--max-depth", help="单个功能内的最大导航深度"),
    parallel: int | None = typer.Option(None, "--parallel", help="并行探索的功能数量"),
):
    """
    探索一个 Web 应用，生成站点地图、知识图谱和统计产物

    示例:
        autoexplorer explore "https://app.example.com" --username admin --password secret
    """
    username = username or os.getenv("EXPLORER_USERNAME")
    password = password or os.getenv("EXPLORER_PASSWORD")
    credentials = (username, password) if username and password else None

    console.print(
        Panel(
            f"[bold]URL:[/bold] {url}\n"
            f"[bold]无头模式:[/bold] {headless}\n"
            f"[bold]登录凭据:[/bold] {'已提供' if credentials else '无'}\n"
            f"[bold]输出目录:[/bold] {output_dir}",
            title="AutoExplorer",
            style="cyan",
        )
    )

    try:
        result = asyncio.run(
            _run_exploration(
                url,
                app_name,
                output_dir,
                headless,
                credentials,
                max_pages,
                max_depth,
                parallel,
            )
        )
    except KeyboardInterrupt:
        console.print("[yellow]用户中断[/yellow]")
        raise typer.Exit(130)
    except AutoExplorerError as e:
        console.print(f"[red]探索失败: {e}[/red]")
        raise typer.Exit(1)

    console.print(_build_features_table(result.statistics.get("features", [])))
    console.print(
        Panel(
            f"[green]探索完成！[/green]\n\n"
            f"页面: {result.statistics.get('total_pages_explored', 0)}\n"
            f"动作: {result.statistics.get('total_actions_discovered', 0)}\n"
            f"跨功能引用: {result.statistics.get('total_cross_feature_refs', 0)}\n"
            f"产物目录: {result.run_dir}",
            title="完成",
            style="green",
        )
    )


@app.command("report")
def report_command(
    run_dir: Path = typer.Argument(..., help="某次运行的产物目录"),
):
    """展示某次运行的统计和功能概览"""
    try:
        artifacts = load_artifacts(run_dir)
    except AutoExplorerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    statistics = artifacts.get("statistics") or {}
    summary = Table(title="统计")
    summary.add_column("指标", style="cyan")
    summary.add_column("值", justify="right")
    for key in (
        "total_features",
        "features_completed",
        "features_failed",
        "total_pages_explored",
        "total_actions_discovered",
        "total_cross_feature_refs",
        "duration_s",
    ):
        if key in statistics:
            summary.add_row(key, str(statistics[key]))

    sitemap_stats = (artifacts.get("sitemap") or {}).get("stats") or {}
    for key in ("pages_fully_explored", "pages_quick_cataloged", "coverage"):
        if key in sitemap_stats:
            value = sitemap_stats[key]
            summary.add_row(key, f"{value:.2f}" if isinstance(value, float) else str(value))
    console.print(summary)

    features = statistics.get("features") or []
    if features:
        console.print(_build_features_table(features))

    patterns = artifacts.get("patterns") or []
    if patterns:
        table = Table(title="页面模式")
        table.add_column("id", style="cyan")
        table.add_column("name", style="green")
        table.add_column("frequency", justify="right")
        for pattern in patterns:
            table.add_row(
                str(pattern.get("id", "")),
                str(pattern.get("name", "")),
                str(pattern.get("frequency", 0)),
            )
        console.print(table)


@app.command("path")
def path_command(
    run_dir: Path = typer.Argument(..., help="某次运行的产物目录"),
    source: str = typer.Argument(..., help="起点功能 id"),
    target: str = typer.Argument(..., help="终点功能 id"),
    max_depth: int = typer.Option(5, "--max-depth", help="最多经过的跳数"),
):
    """在知识图谱中查找两个功能之间的最短路径"""
    from .graph.knowledge_graph import KnowledgeGraphBuilder

    try:
        artifacts = load_artifacts(run_dir)
    except AutoExplorerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    graph_data = artifacts.get("knowledge_graph")
    if not graph_data:
        console.print("[red]该目录下没有 knowledge-graph.json[/red]")
        raise typer.Exit(1)

    builder = KnowledgeGraphBuilder.from_dict(graph_data)
    path = builder.find_path(source, target, max_depth=max_depth)
    if path is None:
        console.print(f"[yellow]{max_depth} 跳内没有从 {source} 到 {target} 的路径[/yellow]")
        raise typer.Exit(1)

    names = [builder.nodes[node].name if node in builder.nodes else node for node in path]
    console.print(" -> ".join(names))


def main():
    """CLI 入口点

    供 pyproject.toml 中 [project.scripts] 调用。
    """
    app()


if __name__ == "__main__":
    main()
