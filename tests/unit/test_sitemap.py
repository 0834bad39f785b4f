"""站点地图构建测试"""

import pytest

from autoexplorer.graph import FeatureInfo, PatternInfo, SitemapBuilder, generate_page_id


@pytest.fixture
def builder() -> SitemapBuilder:
    return SitemapBuilder("https://app.test", "Demo App")


def test_generate_page_id():
    assert generate_page_id("https://App.test/orders?id=1") == "https___app_test_orders_id_1"


class TestPages:
    def test_add_page_defaults(self, builder):
        page = builder.add_page("https://app.test/x")
        assert page.title == "Untitled"
        assert page.type == "page"
        assert page.feature == "unknown"
        assert page.depth == 0

    def test_re_add_keeps_discovered_at(self, builder):
        first = builder.add_page("https://app.test/x", title="X")
        second = builder.add_page("https://app.test/x", title="X2", type="list")
        assert second.discovered_at == first.discovered_at
        assert len(builder.pages) == 1
        assert builder.pages[second.id].title == "X2"

    def test_quick_catalog(self, builder):
        page = builder.quick_catalog_page("https://app.test/orders/2", "pattern_abc", "orders", 1)
        assert page.type == "pattern_match"
        assert page.observations == {"pattern_match": "pattern_abc"}
        assert page.feature == "orders"


class TestConnections:
    def test_aggregated_by_feature_pair(self, builder):
        builder.add_cross_feature_ref("orders", "customers", "/o/1", "/c/1", "客户链接")
        connection = builder.add_cross_feature_ref("orders", "customers", "/o/2", "/c/2", "客户链接")
        assert connection.link_count == 2
        assert len(connection.pages) == 2
        assert connection.bidirectional is False
        assert len(builder.sitemap.connections) == 1

    def test_reverse_marks_both_bidirectional(self, builder):
        forward = builder.add_cross_feature_ref("orders", "customers", "/o/1", "/c/1", "a")
        backward = builder.add_cross_feature_ref("customers", "orders", "/c/1", "/o/1", "b")
        assert forward.bidirectional is True
        assert backward.bidirectional is True

    def test_global_nav_dedup(self, builder):
        assert builder.add_global_nav_item("Orders", "https://app.test/orders") is True
        assert builder.add_global_nav_item("订单", "https://app.test/orders") is False
        assert builder.sitemap.global_nav == [{"label": "Orders", "url": "https://app.test/orders"}]


class TestPatterns:
    def test_find_matching_pattern(self, builder):
        builder.add_pattern(
            PatternInfo(
                pattern_id="p1",
                page_type="list",
                common_structure={"layout": "grid", "has_table": True},
                confidence=0.5,
                total_instances=3,
            )
        )
        assert builder.find_matching_pattern({"layout": "grid", "has_table": False}).pattern_id == "p1"
        assert builder.find_matching_pattern({"layout": "flex"}) is None


class TestFinalize:
    def test_stats_and_coverage(self, builder):
        builder.add_page("https://app.test/a", type="list", actions=["navigation", "form"])
        builder.add_page("https://app.test/b", type="detail", actions=["navigation"])
        builder.quick_catalog_page("https://app.test/c", "p1", "f", 1)
        builder.quick_catalog_page("https://app.test/d", "p1", "f", 1)

        sitemap = builder.finalize(12.5)

        assert sitemap.stats["total_pages"] == 4
        assert sitemap.stats["pages_fully_explored"] == 2
        assert sitemap.stats["pages_quick_cataloged"] == 2
        assert sitemap.stats["coverage"] == pytest.approx(50.0)
        assert sitemap.stats["pages_by_type"] == {"list": 1, "detail": 1, "pattern_match": 2}
        assert sitemap.stats["actions_by_type"] == {"navigation": 2, "form": 1}
        assert sitemap.duration_s == 12.5

    def test_empty_coverage_is_zero(self, builder):
        assert builder.finalize(0).stats["coverage"] == 0.0

    def test_finalize_recomputes(self, builder):
        builder.add_page("https://app.test/a", type="list")
        builder.finalize(1)
        builder.add_page("https://app.test/b", type="list")
        assert builder.finalize(2).stats["pages_by_type"] == {"list": 2}

    def test_to_dict(self, builder):
        builder.add_feature(FeatureInfo(id="orders", name="Orders", entry_url="/orders", page_count=3))
        builder.add_page("https://app.test/orders", type="list", feature="orders")
        builder.add_cross_feature_ref("orders", "customers", "/o", "/c", "ctx")
        builder.add_global_nav_item("Orders", "/orders")
        builder.finalize(3.0)

        data = builder.to_dict()

        assert data["metadata"]["name"] == "Demo App"
        assert data["metadata"]["base_url"] == "https://app.test"
        assert data["navigation"]["features"]["orders"]["page_count"] == 3
        assert data["navigation"]["global_nav"][0]["label"] == "Orders"
        assert data["pages"]["https___app_test_orders"]["type"] == "list"
        edge = data["cross_feature_graph"]["edges"][0]
        assert edge["from"] == "orders"
        assert edge["to"] == "customers"
        assert data["cross_feature_graph"]["summary"] == {
            "total_connections": 1,
            "bidirectional_connections": 0,
        }
        assert data["stats"]["total_pages"] == 1
