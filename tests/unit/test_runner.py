"""探索编排器端到端测试（假的提供方和 Oracle）"""

import asyncio
import json

import pytest

from autoexplorer.common.llm.judge import DecisionJudge
from autoexplorer.common.llm.judgments import make_feature_id
from autoexplorer.common.llm.oracle import OracleKind
from autoexplorer.common.storage import ArtifactStorage
from autoexplorer.explore import ActionOutcome, ExplorationRunner
from autoexplorer.state import FeatureStatus

BASE = "https://app.test"
ORDERS_ID = make_feature_id(f"{BASE}/orders")
CUSTOMERS_ID = make_feature_id(f"{BASE}/customers")

HOME_HTML = """
<html><head><title>Home</title></head>
<body><nav class="side"><a href="/orders">Orders</a><a href="/customers">Customers</a></nav></body></html>
"""

CUSTOMERS_HTML = """
<html><body>
  <aside class="filters"><form class="search"><input name="q" /></form></aside>
  <article class="profile">Customer</article>
</body></html>
"""

NAVIGATION = {
    "sideNavigation": [
        {
            "text": "Orders",
            "url": "/orders",
            "type": "primary_feature",
            "isFeatureEntry": True,
            "priority": 100,
            "presumedGlobal": True,
            "location": "sidebar",
        },
        {
            "text": "Customers",
            "url": "/customers",
            "type": "primary_feature",
            "isFeatureEntry": True,
            "priority": 200,
            "location": "sidebar",
        },
    ]
}


def page_analysis(request):
    path = request.url[len(BASE):]
    if path == "/orders":
        return {
            "pageType": "list",
            "pageTitle": "订单列表",
            "elements": [
                {"selector": "a.o1", "text": "#1", "actionType": "navigation", "targetUrl": "/orders/1"},
                {"selector": "a.o2", "text": "#2", "actionType": "navigation", "targetUrl": "/orders/2"},
                {"selector": "a.o3", "text": "#3", "actionType": "navigation", "targetUrl": "/orders/3"},
                {
                    "selector": "a.c7",
                    "text": "客户 7",
                    "actionType": "cross_feature",
                    "targetUrl": "/customers/7",
                    "targetFeature": "customers",
                },
                {"selector": "#new", "text": "New", "actionType": "bogus"},
            ],
            "navigationLinks": ["/missing", "https://other.test/x", "#"],
            "confidence": 0.9,
        }
    if path.startswith("/orders/"):
        return {"pageType": "detail", "pageTitle": "订单详情", "confidence": 0.8}
    return {"pageType": "form", "pageTitle": "客户", "confidence": 0.7}


@pytest.fixture
def site(list_page_html, detail_html) -> dict[str, str]:
    return {
        f"{BASE}/": HOME_HTML,
        f"{BASE}/orders": list_page_html,
        f"{BASE}/orders/1": detail_html(1),
        f"{BASE}/orders/2": detail_html(2),
        f"{BASE}/orders/3": detail_html(3),
        f"{BASE}/customers": CUSTOMERS_HTML,
    }


@pytest.fixture
def responses() -> dict:
    return {
        OracleKind.LOGIN_DETECT: {"isLoginPage": False, "confidence": 0.9},
        OracleKind.NAVIGATION_ANALYSIS: NAVIGATION,
        OracleKind.PAGE_ANALYSIS: page_analysis,
    }


def make_runner(provider, oracle, **kwargs) -> ExplorationRunner:
    kwargs.setdefault("max_depth", 3)
    kwargs.setdefault("stop_check_interval", 50)
    return ExplorationRunner(f"{BASE}/", provider, DecisionJudge(oracle), **kwargs)


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_features_from_navigation(self, site, responses, fake_provider_factory, fake_oracle_factory):
        runner = make_runner(fake_provider_factory(site), fake_oracle_factory(responses))

        result = await runner.run()

        features = {f["id"]: f for f in result.statistics["features"]}
        assert set(features) == {ORDERS_ID, CUSTOMERS_ID}
        assert all(f["status"] == "completed" for f in features.values())
        assert result.sitemap["navigation"]["global_nav"] == [{"label": "Orders", "url": f"{BASE}/orders"}]
        assert result.sitemap["metadata"]["name"] == "app.test"

    @pytest.mark.asyncio
    async def test_landing_fallback_feature(self, fake_provider_factory, fake_oracle_factory):
        provider = fake_provider_factory({f"{BASE}/": HOME_HTML})
        oracle = fake_oracle_factory(
            {
                OracleKind.LOGIN_DETECT: {"isLoginPage": False},
                OracleKind.NAVIGATION_ANALYSIS: {},
                OracleKind.PAGE_ANALYSIS: {"pageType": "dashboard", "confidence": 0.9},
            }
        )

        result = await make_runner(provider, oracle, app_name="Demo").run()

        assert [f["id"] for f in result.statistics["features"]] == ["feature_main"]
        assert result.statistics["features"][0]["name"] == "Demo"
        assert result.statistics["features_completed"] == 1

    @pytest.mark.asyncio
    async def test_unreachable_landing_page(self, fake_provider_factory, fake_oracle_factory, tmp_path):
        storage = ArtifactStorage("demo", BASE, base_path=tmp_path, crawl_id="c1")
        provider = fake_provider_factory({})

        result = await make_runner(provider, fake_oracle_factory({}), storage=storage).run()

        assert result.statistics["total_features"] == 0
        assert provider.shared["forks"] == 0
        log = (storage.run_dir / "exploration.log").read_text(encoding="utf-8")
        assert "landing_failed" in log

    @pytest.mark.asyncio
    async def test_max_features(self, site, responses, fake_provider_factory, fake_oracle_factory):
        runner = make_runner(fake_provider_factory(site), fake_oracle_factory(responses), max_features=1)

        result = await runner.run()

        assert [f["id"] for f in result.statistics["features"]] == [ORDERS_ID]


class TestFeatureExploration:
    @pytest.mark.asyncio
    async def test_similar_pages_are_quick_cataloged(
        self, site, responses, fake_provider_factory, fake_oracle_factory
    ):
        oracle = fake_oracle_factory(responses)
        result = await make_runner(fake_provider_factory(site), oracle).run()

        analyzed = {r.url for r in oracle.calls(OracleKind.PAGE_ANALYSIS)}
        assert analyzed == {f"{BASE}/orders", f"{BASE}/orders/1", f"{BASE}/customers"}

        pages = result.sitemap["pages"]
        cataloged = [p for p in pages.values() if p["type"] == "pattern_match"]
        assert sorted(p["url"] for p in cataloged) == [f"{BASE}/orders/2", f"{BASE}/orders/3"]
        assert result.sitemap["stats"]["pages_quick_cataloged"] == 2

        detail_pattern = next(p for p in result.patterns if p["name"] == "detail")
        assert detail_pattern["frequency"] == 3

    @pytest.mark.asyncio
    async def test_links_and_actions_recorded(self, site, responses, fake_provider_factory, fake_oracle_factory):
        result = await make_runner(fake_provider_factory(site), fake_oracle_factory(responses)).run()

        orders_page = next(p for p in result.sitemap["pages"].values() if p["url"] == f"{BASE}/orders")
        assert orders_page["title"] == "订单列表"
        assert orders_page["links_to"] == [
            f"{BASE}/orders/1",
            f"{BASE}/orders/2",
            f"{BASE}/orders/3",
            f"{BASE}/missing",
        ]

        details = {f["id"]: f for f in result.statistics["feature_details"]}
        actions = {a["selector"]: a["type"] for a in details[ORDERS_ID]["actions"]}
        assert actions["a.c7"] == "cross_feature"
        assert actions["#new"] == "non_navigation"

    @pytest.mark.asyncio
    async def test_cross_feature_references(self, site, responses, fake_provider_factory, fake_oracle_factory):
        result = await make_runner(fake_provider_factory(site), fake_oracle_factory(responses)).run()

        edges = {(e["source"], e["target"]): e for e in result.knowledge_graph["edges"]}
        edge = edges[(ORDERS_ID, CUSTOMERS_ID)]
        assert edge["metadata"]["target_pages"] == [f"{BASE}/customers/7"]
        assert edge["metadata"]["link_contexts"] == ["客户 7"]

        assert result.statistics["total_cross_feature_refs"] == 1
        graph_edges = result.sitemap["cross_feature_graph"]["edges"]
        assert graph_edges[0]["from"] == ORDERS_ID
        assert graph_edges[0]["to"] == CUSTOMERS_ID

    @pytest.mark.asyncio
    async def test_page_load_failure_does_not_abort(
        self, site, responses, fake_provider_factory, fake_oracle_factory
    ):
        result = await make_runner(fake_provider_factory(site), fake_oracle_factory(responses)).run()

        details = {f["id"]: f for f in result.statistics["feature_details"]}
        assert details[ORDERS_ID]["status"] == "completed"
        assert f"{BASE}/missing" in details[ORDERS_ID]["visited_pages"]
        assert not any(p["url"] == f"{BASE}/missing" for p in result.sitemap["pages"].values())

    @pytest.mark.asyncio
    async def test_depth_limit(self, site, responses, fake_provider_factory, fake_oracle_factory):
        oracle = fake_oracle_factory(responses)
        result = await make_runner(fake_provider_factory(site), oracle, max_depth=0).run()

        analyzed = {r.url for r in oracle.calls(OracleKind.PAGE_ANALYSIS)}
        assert analyzed == {f"{BASE}/orders", f"{BASE}/customers"}
        assert result.statistics["total_pages_explored"] == 3

    @pytest.mark.asyncio
    async def test_oracle_failure_degrades(self, site, fake_provider_factory, fake_oracle_factory):
        oracle = fake_oracle_factory(
            {
                OracleKind.LOGIN_DETECT: RuntimeError("down"),
                OracleKind.NAVIGATION_ANALYSIS: NAVIGATION,
                OracleKind.PAGE_ANALYSIS: "not json at all",
            }
        )

        result = await make_runner(fake_provider_factory(site), oracle).run()

        assert result.statistics["features_completed"] == 2
        assert result.patterns == []
        assert all(p["type"] == "unknown" for p in result.sitemap["pages"].values())
        assert result.statistics["oracle"]["failures"] >= 3

    @pytest.mark.asyncio
    async def test_feature_error_marks_failed(
        self, site, responses, fake_provider_factory, fake_oracle_factory, monkeypatch
    ):
        runner = make_runner(fake_provider_factory(site), fake_oracle_factory(responses))
        real_build_stats = runner._build_stats

        def broken_build_stats(feature, progress):
            if feature.id == CUSTOMERS_ID:
                raise RuntimeError("stats unavailable")
            return real_build_stats(feature, progress)

        monkeypatch.setattr(runner, "_build_stats", broken_build_stats)
        result = await runner.run()

        details = {f["id"]: f for f in result.statistics["feature_details"]}
        assert details[CUSTOMERS_ID]["status"] == "failed"
        assert details[CUSTOMERS_ID]["error"] == "stats unavailable"
        assert details[ORDERS_ID]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unreadable_page_is_skipped(
        self, site, responses, fake_provider_factory, fake_oracle_factory, monkeypatch
    ):
        provider = fake_provider_factory(site)
        real_read = type(provider).read_document

        async def broken_read(self):
            if self.current_url == f"{BASE}/orders/1":
                raise RuntimeError("navigation interrupted")
            return await real_read(self)

        monkeypatch.setattr(type(provider), "read_document", broken_read)
        oracle = fake_oracle_factory(responses)
        result = await make_runner(provider, oracle).run()

        details = {f["id"]: f for f in result.statistics["feature_details"]}
        assert details[ORDERS_ID]["status"] == "completed"
        assert f"{BASE}/orders/1" in details[ORDERS_ID]["visited_pages"]

        page_urls = {p["url"] for p in result.sitemap["pages"].values()}
        assert f"{BASE}/orders/1" not in page_urls
        assert {f"{BASE}/orders/2", f"{BASE}/orders/3"} <= page_urls
        assert f"{BASE}/orders/1" not in {r.url for r in oracle.calls(OracleKind.PAGE_ANALYSIS)}

    @pytest.mark.asyncio
    async def test_cancelled_feature_stops_and_run_finishes(
        self, site, responses, fake_provider_factory, fake_oracle_factory, tmp_path
    ):
        storage = ArtifactStorage("demo", BASE, base_path=tmp_path, crawl_id="c1")
        oracle = fake_oracle_factory(responses)
        runner = make_runner(fake_provider_factory(site), oracle, storage=storage)

        def cancel_orders(request):
            if request.url == f"{BASE}/orders":
                runner.state.update_feature_status(ORDERS_ID, FeatureStatus.FAILED, "cancelled by user")
            return page_analysis(request)

        oracle.responses[OracleKind.PAGE_ANALYSIS] = cancel_orders
        result = await runner.run()

        details = {f["id"]: f for f in result.statistics["feature_details"]}
        assert details[ORDERS_ID]["status"] == "failed"
        assert details[ORDERS_ID]["error"] == "cancelled by user"
        assert details[ORDERS_ID]["visited_pages"] == [f"{BASE}/orders"]
        assert details[CUSTOMERS_ID]["status"] == "completed"

        events = [
            json.loads(line)["event"]
            for line in (storage.run_dir / "exploration.log").read_text(encoding="utf-8").splitlines()
        ]
        assert "feature_cancelled" in events
        assert events[-1] == "run_finished"

    @pytest.mark.asyncio
    async def test_first_stop_check_counts_finished_batch(
        self, list_page_html, fake_provider_factory, fake_oracle_factory
    ):
        site = {f"{BASE}/": HOME_HTML, f"{BASE}/orders": list_page_html}
        for n in range(1, 31):
            site[f"{BASE}/orders/{n}"] = list_page_html

        def fan_out(request):
            path = request.url[len(BASE):]
            parent = 0 if path == "/orders" else int(path.rsplit("/", 1)[1])
            links = [f"/orders/{parent * 3 + i}" for i in (1, 2, 3)]
            return {"pageType": "list", "navigationLinks": links, "confidence": 0}

        oracle = fake_oracle_factory(
            {
                OracleKind.LOGIN_DETECT: {"isLoginPage": False},
                OracleKind.NAVIGATION_ANALYSIS: {"sideNavigation": NAVIGATION["sideNavigation"][:1]},
                OracleKind.PAGE_ANALYSIS: fan_out,
                OracleKind.STOPPING_EVAL: RuntimeError("oracle down"),
            }
        )
        runner = make_runner(
            fake_provider_factory(site),
            oracle,
            max_depth=10,
            stop_check_interval=3,
            max_pages_per_feature=50,
        )

        result = await runner.run()

        assert oracle.calls(OracleKind.STOPPING_EVAL)
        details = {f["id"]: f for f in result.statistics["feature_details"]}
        assert details[ORDERS_ID]["page_count"] >= 12


class TestWorkers:
    @pytest.mark.asyncio
    async def test_workers_fork_and_stop(self, site, responses, fake_provider_factory, fake_oracle_factory):
        provider = fake_provider_factory(site)

        await make_runner(provider, fake_oracle_factory(responses), max_parallel_features=3).run()

        assert provider.shared["forks"] == 2
        assert provider.shared["stopped"] == 2

    @pytest.mark.asyncio
    async def test_single_worker(self, site, responses, fake_provider_factory, fake_oracle_factory):
        provider = fake_provider_factory(site)

        result = await make_runner(provider, fake_oracle_factory(responses), max_parallel_features=1).run()

        assert provider.shared["forks"] == 1
        assert result.statistics["features_completed"] == 2

    @pytest.mark.asyncio
    async def test_shared_page_explored_once(
        self, list_page_html, fake_provider_factory, fake_oracle_factory, monkeypatch
    ):
        site = {
            f"{BASE}/": HOME_HTML,
            f"{BASE}/orders": list_page_html,
            f"{BASE}/customers": CUSTOMERS_HTML,
            f"{BASE}/shared": "<html><body><main>Shared</main></body></html>",
        }
        provider = fake_provider_factory(site)
        real_navigate = type(provider).navigate

        async def slow_navigate(self, url):
            await asyncio.sleep(0.01)
            return await real_navigate(self, url)

        monkeypatch.setattr(type(provider), "navigate", slow_navigate)
        oracle = fake_oracle_factory(
            {
                OracleKind.LOGIN_DETECT: {"isLoginPage": False},
                OracleKind.NAVIGATION_ANALYSIS: NAVIGATION,
                OracleKind.PAGE_ANALYSIS: {"pageType": "list", "navigationLinks": ["/shared"], "confidence": 0},
            }
        )
        runner = make_runner(provider, oracle, max_parallel_features=2)

        await runner.run()

        shared = f"{BASE}/shared"
        assert [r.url for r in oracle.calls(OracleKind.PAGE_ANALYSIS)].count(shared) == 1
        assert [v.url for v in runner.state.history].count(shared) == 1


class TestLoginAndModals:
    @pytest.mark.asyncio
    async def test_login_with_credentials(self, site, responses, fake_provider_factory, fake_oracle_factory):
        responses[OracleKind.LOGIN_DETECT] = {
            "isLoginPage": True,
            "confidence": 0.95,
            "actionPlan": {"usernameField": "#user", "passwordField": "#pass", "submitButton": "#go"},
        }
        provider = fake_provider_factory(site)

        await make_runner(provider, fake_oracle_factory(responses), credentials=("alice", "s3cret")).run()

        assert provider.actions[:3] == [
            ("#user", "fill", "alice"),
            ("#pass", "fill", "s3cret"),
            ("#go", "click", None),
        ]

    @pytest.mark.asyncio
    async def test_login_skipped_without_credentials(
        self, site, responses, fake_provider_factory, fake_oracle_factory
    ):
        responses[OracleKind.LOGIN_DETECT] = {
            "isLoginPage": True,
            "confidence": 0.95,
            "actionPlan": {"usernameField": "#user", "passwordField": "#pass", "submitButton": "#go"},
        }
        provider = fake_provider_factory(site)

        result = await make_runner(provider, fake_oracle_factory(responses)).run()

        assert provider.actions == []
        assert result.statistics["total_features"] == 2

    @pytest.mark.asyncio
    async def test_failed_login_step_stops_login(
        self, site, responses, fake_provider_factory, fake_oracle_factory
    ):
        responses[OracleKind.LOGIN_DETECT] = {
            "isLoginPage": True,
            "confidence": 0.95,
            "actionPlan": {"usernameField": "#user", "passwordField": "#pass", "submitButton": "#go"},
        }
        provider = fake_provider_factory(site)
        provider.act_results["#user"] = ActionOutcome.error("not found")

        await make_runner(provider, fake_oracle_factory(responses), credentials=("alice", "x")).run()

        assert provider.actions == [("#user", "fill", "alice")]

    @pytest.mark.asyncio
    async def test_modal_is_closed(self, site, responses, modal_page_html, fake_provider_factory, fake_oracle_factory):
        site[f"{BASE}/customers"] = modal_page_html
        responses[OracleKind.MODAL_DETECT] = {
            "isModalOpen": True,
            "confidence": 0.9,
            "closingAction": {"type": "click", "target": "button.close"},
        }
        oracle = fake_oracle_factory(responses)
        provider = fake_provider_factory(site)

        await make_runner(provider, oracle).run()

        assert [r.url for r in oracle.calls(OracleKind.MODAL_DETECT)] == [f"{BASE}/customers"]
        assert ("button.close", "click", None) in provider.actions

    @pytest.mark.asyncio
    async def test_low_confidence_modal_left_open(
        self, site, responses, modal_page_html, fake_provider_factory, fake_oracle_factory
    ):
        site[f"{BASE}/customers"] = modal_page_html
        responses[OracleKind.MODAL_DETECT] = {
            "isModalOpen": True,
            "confidence": 0.4,
            "closingAction": {"type": "keyboard", "key": "Escape"},
        }
        provider = fake_provider_factory(site)

        await make_runner(provider, fake_oracle_factory(responses)).run()

        assert provider.actions == []


class TestArtifacts:
    @pytest.mark.asyncio
    async def test_artifacts_written(self, site, responses, fake_provider_factory, fake_oracle_factory, tmp_path):
        storage = ArtifactStorage("Demo App", BASE, base_path=tmp_path, crawl_id="crawl_x")

        result = await make_runner(
            fake_provider_factory(site), fake_oracle_factory(responses), storage=storage
        ).run()

        run_dir = tmp_path / "demo_app" / "crawl_x"
        assert result.run_dir == run_dir
        for name in (
            "sitemap.json",
            "knowledge-graph.json",
            "statistics.json",
            "patterns.json",
            "metadata.json",
            "REPORT.md",
        ):
            assert (run_dir / name).exists(), name

        events = [
            json.loads(line)["event"]
            for line in (run_dir / "exploration.log").read_text(encoding="utf-8").splitlines()
        ]
        assert events[0] == "run_started"
        assert events[-1] == "run_finished"
        assert "features_discovered" in events
        assert events.count("page_cataloged") == 2
        assert "page_failed" in events

        assert "| Customers | completed |" in result.report
        metadata = json.loads((run_dir / "metadata.json").read_text(encoding="utf-8"))
        assert metadata["start_url"] == f"{BASE}/"
