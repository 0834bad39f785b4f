"""功能知识图谱

把探索过程中发现的功能（节点）与跨功能引用（有向边）整理成图，并提供：
- 连通性统计（节点/边数、双向边、平均连接数、连接最多的功能、孤立功能）
- 功能间最短路径（有向）
- 连通分量（边视为无向）
- 功能重要性排名（入度权重 0.6，出度权重 0.4）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import networkx as nx

from ..common.constants import (
    DEFAULT_PATH_MAX_DEPTH,
    INBOUND_IMPORTANCE_WEIGHT,
    MOST_CONNECTED_LIMIT,
    OUTBOUND_IMPORTANCE_WEIGHT,
)
from ..common.logger import get_logger

if TYPE_CHECKING:
    from ..state.exploration_state import ExplorationState

logger = get_logger(__name__)


@dataclass
class FeatureNode:
    """功能节点（finalize 时的快照）"""

    id: str
    name: str
    entry_url: str = ""
    page_count: int = 0
    action_count: int = 0
    priority: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entry_url": self.entry_url,
            "page_count": self.page_count,
            "action_count": self.action_count,
            "priority": self.priority,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeatureNode":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            entry_url=data.get("entry_url", ""),
            page_count=data.get("page_count", 0),
            action_count=data.get("action_count", 0),
            priority=data.get("priority"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class FeatureEdge:
    """功能之间的有向边"""

    source: str
    target: str
    weight: int = 1
    bidirectional: bool = False
    type: str = "navigation"
    source_pages: list[str] = field(default_factory=list)
    target_pages: list[str] = field(default_factory=list)
    link_contexts: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.source}->{self.target}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "weight": self.weight,
            "bidirectional": self.bidirectional,
            "type": self.type,
            "metadata": {
                "source_pages": list(self.source_pages),
                "target_pages": list(self.target_pages),
                "link_contexts": list(self.link_contexts),
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeatureEdge":
        meta = data.get("metadata") or {}
        return cls(
            source=data["source"],
            target=data["target"],
            weight=data.get("weight", 1),
            bidirectional=data.get("bidirectional", False),
            type=data.get("type", "navigation"),
            source_pages=list(meta.get("source_pages", [])),
            target_pages=list(meta.get("target_pages", [])),
            link_contexts=list(meta.get("link_contexts", [])),
        )


@dataclass
class GraphStatistics:
    """图统计"""

    total_nodes: int = 0
    total_edges: int = 0
    bidirectional_edges: int = 0
    avg_connections_per_node: float = 0.0
    most_connected_features: list[dict[str, Any]] = field(default_factory=list)
    isolated_features: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "total_edges": self.total_edges,
            "bidirectional_edges": self.bidirectional_edges,
            "avg_connections_per_node": self.avg_connections_per_node,
            "most_connected_features": [dict(item) for item in self.most_connected_features],
            "isolated_features": list(self.isolated_features),
        }


@dataclass
class KnowledgeGraph:
    """知识图谱"""

    app_base_url: str
    created_at: datetime = field(default_factory=datetime.now)
    page_count: int = 0
    nodes: dict[str, FeatureNode] = field(default_factory=dict)
    edges: dict[str, FeatureEdge] = field(default_factory=dict)
    statistics: GraphStatistics = field(default_factory=GraphStatistics)


class KnowledgeGraphBuilder:
    """知识图谱构建器"""

    def __init__(self, base_url: str):
        self.graph = KnowledgeGraph(app_base_url=base_url)

    @property
    def nodes(self) -> dict[str, FeatureNode]:
        return self.graph.nodes

    @property
    def edges(self) -> dict[str, FeatureEdge]:
        return self.graph.edges

    def add_feature(self, node: FeatureNode) -> None:
        self.graph.nodes[node.id] = node
        logger.debug("[图谱] 添加功能节点: %s", node.id)

    def add_connection(
        self,
        source: str,
        target: str,
        weight: int = 1,
        source_page: str | None = None,
        target_page: str | None = None,
        context: str | None = None,
    ) -> FeatureEdge | None:
        """添加 / 累加一条有向边

        自环直接忽略。反向边已存在时，两条边同时标记为双向。
        """
        if source == target:
            return None

        key = f"{source}->{target}"
        edge = self.graph.edges.get(key)
        if edge is None:
            edge = FeatureEdge(source=source, target=target, weight=weight)
            self.graph.edges[key] = edge
        else:
            edge.weight += weight

        if source_page and source_page not in edge.source_pages:
            edge.source_pages.append(source_page)
        if target_page and target_page not in edge.target_pages:
            edge.target_pages.append(target_page)
        if context and context not in edge.link_contexts:
            edge.link_contexts.append(context)

        reverse = self.graph.edges.get(f"{target}->{source}")
        if reverse is not None:
            edge.bidirectional = True
            reverse.bidirectional = True

        logger.debug("[图谱] 添加连接: %s -> %s (权重: %d)", source, target, edge.weight)
        return edge

    def build_from_state(self, state: "ExplorationState") -> "KnowledgeGraphBuilder":
        """从探索状态导入功能节点和跨功能引用"""
        for feature in state.features:
            self.add_feature(
                FeatureNode(
                    id=feature.id,
                    name=feature.name,
                    entry_url=feature.entry_url,
                    page_count=feature.page_count,
                    action_count=len(feature.actions),
                    priority=feature.priority,
                    metadata={"status": feature.status.value},
                )
            )
        for ref in state.cross_feature_refs:
            self.add_connection(
                ref.source_feature,
                ref.target_feature,
                weight=ref.count,
                source_page=ref.source_url,
                target_page=ref.target_url,
                context=ref.trigger,
            )
        self.graph.page_count = state.total_pages_explored
        return self

    def to_networkx(self) -> nx.DiGraph:
        """把节点和边投影成 networkx 有向图（边带 weight 属性）"""
        g = nx.DiGraph()
        g.add_nodes_from(self.graph.nodes)
        for edge in self.graph.edges.values():
            g.add_edge(edge.source, edge.target, weight=edge.weight, bidirectional=edge.bidirectional)
        return g

    def finalize(self) -> KnowledgeGraph:
        """重新计算统计（纯计算，可重复调用）"""
        nodes = self.graph.nodes
        g = self.to_networkx()

        stats = GraphStatistics(
            total_nodes=len(nodes),
            total_edges=len(self.graph.edges),
            bidirectional_edges=sum(1 for e in self.graph.edges.values() if e.bidirectional),
        )
        if stats.total_nodes > 0:
            stats.avg_connections_per_node = stats.total_edges * 2 / stats.total_nodes

        ranked = sorted(
            ((node_id, g.degree(node_id, weight="weight")) for node_id in nodes),
            key=lambda item: item[1],
            reverse=True,
        )
        stats.most_connected_features = [
            {"id": node_id, "connection_count": count}
            for node_id, count in ranked[:MOST_CONNECTED_LIMIT]
        ]
        stats.isolated_features = [node_id for node_id in nodes if g.degree(node_id) == 0]

        self.graph.statistics = stats
        logger.info("[图谱] 知识图谱完成: %d 个节点, %d 条边", stats.total_nodes, stats.total_edges)
        return self.graph

    def get_feature_connectivity(self, feature_id: str) -> dict[str, int]:
        """出边数、入边数、双向出边数"""
        g = self.to_networkx()
        if feature_id not in g:
            return {"outgoing": 0, "incoming": 0, "bidirectional": 0}
        return {
            "outgoing": g.out_degree(feature_id),
            "incoming": g.in_degree(feature_id),
            "bidirectional": sum(
                1 for _, _, bidirectional in g.out_edges(feature_id, data="bidirectional") if bidirectional
            ),
        }

    def find_path(
        self,
        source: str,
        target: str,
        max_depth: int = DEFAULT_PATH_MAX_DEPTH,
    ) -> list[str] | None:
        """有向最短路径，跳数超过 max_depth 或不可达时返回 None"""
        try:
            path = nx.shortest_path(self.to_networkx(), source, target)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None
        if len(path) - 1 > max_depth:
            return None
        return path

    def get_clusters(self) -> dict[str, list[str]]:
        """把边视为无向，求连通分量

        分量按首个成员在节点表中的顺序编号，成员也按节点表顺序排列。
        """
        order = {node_id: index for index, node_id in enumerate(self.graph.nodes)}
        g = self.to_networkx().to_undirected(as_view=True)
        components = [
            sorted((n for n in component if n in order), key=order.__getitem__)
            for component in nx.connected_components(g)
        ]
        components = sorted((c for c in components if c), key=lambda c: order[c[0]])

        clusters = {f"cluster_{index}": members for index, members in enumerate(components)}
        logger.info("[图谱] 找到 %d 个连通分量", len(clusters))
        return clusters

    def get_feature_importance(self) -> list[dict[str, Any]]:
        """按 0.6 * 入度权重 + 0.4 * 出度权重 降序排列"""
        g = self.to_networkx()
        items = []
        for node_id in self.graph.nodes:
            inbound = g.in_degree(node_id, weight="weight")
            outbound = g.out_degree(node_id, weight="weight")
            items.append(
                {
                    "feature_id": node_id,
                    "importance": inbound * INBOUND_IMPORTANCE_WEIGHT
                    + outbound * OUTBOUND_IMPORTANCE_WEIGHT,
                    "inbound": inbound,
                    "outbound": outbound,
                }
            )
        return sorted(items, key=lambda item: item["importance"], reverse=True)

    def to_dict(self) -> dict[str, Any]:
        """导出为 knowledge-graph.json 的结构"""
        return {
            "metadata": {
                "created_at": self.graph.created_at.isoformat(),
                "app_base_url": self.graph.app_base_url,
                "feature_count": len(self.graph.nodes),
                "page_count": self.graph.page_count,
            },
            "nodes": {node_id: node.to_dict() for node_id, node in self.graph.nodes.items()},
            "edges": [edge.to_dict() for edge in self.graph.edges.values()],
            "statistics": self.graph.statistics.to_dict(),
            "analysis": {
                "feature_importance": self.get_feature_importance(),
                "clusters": [
                    {"cluster_id": cluster_id, "feature_count": len(members), "features": members}
                    for cluster_id, members in self.get_clusters().items()
                ],
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeGraphBuilder":
        """从 knowledge-graph.json 恢复（统计会重新计算）"""
        metadata = data.get("metadata") or {}
        builder = cls(metadata.get("app_base_url", ""))
        created_at = metadata.get("created_at")
        if created_at:
            builder.graph.created_at = datetime.fromisoformat(created_at)
        builder.graph.page_count = metadata.get("page_count", 0)
        for node_data in (data.get("nodes") or {}).values():
            builder.add_feature(FeatureNode.from_dict(node_data))
        for edge_data in data.get("edges") or []:
            edge = FeatureEdge.from_dict(edge_data)
            builder.graph.edges[edge.key] = edge
        builder.finalize()
        return builder
