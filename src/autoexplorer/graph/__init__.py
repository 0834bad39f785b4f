"""知识图谱与站点地图"""

from .knowledge_graph import (
    FeatureEdge,
    FeatureNode,
    GraphStatistics,
    KnowledgeGraph,
    KnowledgeGraphBuilder,
)
from .sitemap import (
    CrossFeatureConnection,
    FeatureInfo,
    PageAnalysis,
    PatternInfo,
    Sitemap,
    SitemapBuilder,
    generate_page_id,
)

__all__ = [
    "FeatureEdge",
    "FeatureNode",
    "GraphStatistics",
    "KnowledgeGraph",
    "KnowledgeGraphBuilder",
    "CrossFeatureConnection",
    "FeatureInfo",
    "PageAnalysis",
    "PatternInfo",
    "Sitemap",
    "SitemapBuilder",
    "generate_page_id",
]
