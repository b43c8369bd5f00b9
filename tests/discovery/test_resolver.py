"""
Summary of Benefits resolver tests.

Search and document fetches both go through one httpx.MockTransport; the
PDF text extractor is replaced with a plain decode so candidate "PDFs"
are just text payloads.
"""

import asyncio
import json
from pathlib import Path

import httpx
import pandas as pd
import pytest

from ma_landscape.discovery.resolver import SummaryOfBenefitsResolver, build_queries, run_discovery
from ma_landscape.discovery.search_client import SerpApiClient
from ma_landscape.errors import SearchError
from ma_landscape.models import PlanDescriptor

SEARCH_HOST = "serpapi.com"
GOOD_TEXT = b"Kaiser Permanente Senior Advantage\n2025 Summary of Benefits\nH0524-001"


def decode_text(data: bytes) -> str:
    return data.decode("utf-8")


def make_plan(plan_id="1", **overrides):
    values = {
        "year": 2025,
        "contract_id": "H0524",
        "plan_id": plan_id,
        "segment_id": "0",
        "org_name": "Kaiser Permanente",
        "marketing_name": "KP Senior Advantage",
    }
    values.update(overrides)
    return PlanDescriptor(**values)


class FakeWeb:
    """Routes search requests to canned results and document URLs to canned payloads"""

    def __init__(self, results=None, documents=None, search_status=200, malformed=()):
        self.results = results or {}
        self.malformed = set(malformed)
        self.documents = documents or {}
        self.search_status = search_status
        self.queries = []
        self.fetched = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == SEARCH_HOST:
            query = request.url.params["q"]
            self.queries.append(query)
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={"error": "quota"})
            if query in self.malformed:
                return httpx.Response(200, json=[{"link": "https://kp.test/sb.pdf"}])
            links = self.results.get(query, [])
            return httpx.Response(200, json={"organic_results": [{"link": link} for link in links]})

        url = str(request.url)
        self.fetched.append(url)
        if url not in self.documents:
            return httpx.Response(404)
        status, content_type, body = self.documents[url]
        return httpx.Response(status, headers={"content-type": content_type}, content=body)


def first_query(plan):
    return f'"Summary of Benefits" {plan.year} {plan.contract_id}-{str(plan.plan_id).zfill(3)} filetype:pdf'


def make_resolver(web, settings):
    client = httpx.AsyncClient(transport=httpx.MockTransport(web))
    search = SerpApiClient(client, "test-key", settings.serpapi_url)
    return SummaryOfBenefitsResolver(search, client, settings, text_extractor=decode_text), client


class TestSerpApiClient:

    @pytest.mark.asyncio
    async def test_sends_query_params(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json={"organic_results": [{"link": "https://a.test/sb.pdf"}]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            urls = await SerpApiClient(client, "secret").search("query text", num=20)

        assert urls == ["https://a.test/sb.pdf"]
        assert seen == {"q": "query text", "num": "20", "engine": "google", "api_key": "secret"}

    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_error_status_raises(self):
        handler = lambda request: httpx.Response(429, json={"error": "rate limited"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SearchError, match="429"):
                await SerpApiClient(client, "secret").search("q")


    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_non_object_payload_raises(self):
        handler = lambda request: httpx.Response(200, json=[{"link": "https://a.test/sb.pdf"}])
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SearchError, match="unexpected payload"):
                await SerpApiClient(client, "secret").search("q")

    @pytest.mark.asyncio
    async def test_non_object_results_skipped(self):
        handler = lambda request: httpx.Response(200, json={"organic_results": ["junk", {"link": "https://a.test/sb.pdf"}]})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            assert await SerpApiClient(client, "secret").search("q") == ["https://a.test/sb.pdf"]


class TestResolveOne:

    @pytest.mark.asyncio
    async def test_first_verified_candidate_wins(self, settings):
        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): [
                "https://kp.test/landing",
                "https://kp.test/wrong-plan.pdf",
                "https://kp.test/sb-2025.pdf",
                "https://kp.test/also-good.pdf",
            ]},
            documents={
                "https://kp.test/wrong-plan.pdf": (200, "application/pdf", b"2025 Summary of Benefits H0524-002"),
                "https://kp.test/sb-2025.pdf": (200, "application/pdf", GOOD_TEXT),
                "https://kp.test/also-good.pdf": (200, "application/pdf", GOOD_TEXT),
            },
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) == "https://kp.test/sb-2025.pdf"

        # Stops at the first success; the landing page is never fetched
        assert web.fetched == ["https://kp.test/wrong-plan.pdf", "https://kp.test/sb-2025.pdf"]
        assert len(web.queries) == 1

    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_missing_marker_rejected(self, settings):
        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): ["https://kp.test/eoc.pdf"]},
            documents={"https://kp.test/eoc.pdf": (200, "application/pdf", b"2025 Evidence of Coverage H0524-001")},
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) is None
        assert len(web.queries) == 3

    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_non_pdf_content_rejected(self, settings):
        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): ["https://kp.test/sb"]},
            documents={"https://kp.test/sb": (200, "text/html", GOOD_TEXT)},
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) is None

    @pytest.mark.asyncio
    async def test_server_error_falls_through_to_next_candidate(self, settings):
        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): ["https://kp.test/broken.pdf", "https://kp.test/sb.pdf"]},
            documents={
                "https://kp.test/broken.pdf": (500, "application/pdf", b""),
                "https://kp.test/sb.pdf": (200, "application/pdf", GOOD_TEXT),
            },
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) == "https://kp.test/sb.pdf"

    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_oversized_payload_rejected(self, settings):
        settings = settings.model_copy(update={"pdf_max_bytes": 10})
        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): ["https://kp.test/sb.pdf"]},
            documents={"https://kp.test/sb.pdf": (200, "application/pdf", GOOD_TEXT)},
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) is None

    @pytest.mark.asyncio
    async def test_later_query_used_when_first_finds_nothing(self, settings):
        plan = make_plan()
        marketing_query = '"Summary of Benefits" 2025 "KP Senior Advantage" filetype:pdf'
        web = FakeWeb(
            results={marketing_query: ["https://kp.test/sb.pdf"]},
            documents={"https://kp.test/sb.pdf": (200, "application/pdf", GOOD_TEXT)},
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) == "https://kp.test/sb.pdf"
        assert web.queries[-1] == marketing_query

    @pytest.mark.asyncio
    async def test_malformed_search_payload_moves_to_next_query(self, settings):
        plan = make_plan()
        second_query = build_queries(plan)[1]
        web = FakeWeb(
            results={second_query: ["https://kp.test/sb.pdf"]},
            documents={"https://kp.test/sb.pdf": (200, "application/pdf", GOOD_TEXT)},
            malformed=[first_query(plan)],
        )
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(plan) == "https://kp.test/sb.pdf"
        assert web.queries == [first_query(plan), second_query]

    @pytest.mark.asyncio
    @pytest.mark.negative
    async def test_search_failures_do_not_raise(self, settings):
        web = FakeWeb(search_status=500)
        resolver, client = make_resolver(web, settings)
        async with client:
            assert await resolver.resolve_one(make_plan()) is None
        assert len(web.queries) == 3


class TestResolveAll:

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, settings):
        settings = settings.model_copy(update={"sb_discovery_concurrency": 2})

        class TrackingResolver(SummaryOfBenefitsResolver):
            in_flight = 0
            peak = 0

            async def resolve_one(self, plan):
                TrackingResolver.in_flight += 1
                TrackingResolver.peak = max(TrackingResolver.peak, TrackingResolver.in_flight)
                await asyncio.sleep(0.01)
                TrackingResolver.in_flight -= 1
                return f"https://kp.test/{plan.plan_id}.pdf"

        resolver = TrackingResolver(None, None, settings, text_extractor=decode_text)
        plans = [make_plan(plan_id=str(i)) for i in range(1, 7)]
        urls = await resolver.resolve_all(plans)

        assert TrackingResolver.peak == 2
        assert urls == [f"https://kp.test/{i}.pdf" for i in range(1, 7)]

    @pytest.mark.asyncio
    async def test_task_failure_does_not_abort_batch(self, settings):

        class FlakyResolver(SummaryOfBenefitsResolver):
            async def resolve_one(self, plan):
                if plan.plan_id == "2":
                    raise RuntimeError("boom")
                return "https://kp.test/ok.pdf"

        resolver = FlakyResolver(None, None, settings, text_extractor=decode_text)
        urls = await resolver.resolve_all([make_plan("1"), make_plan("2"), make_plan("3")])
        assert urls == ["https://kp.test/ok.pdf", None, "https://kp.test/ok.pdf"]

    @pytest.mark.asyncio
    async def test_discover_year_partitions_and_sorts(self, settings):

        class OddResolver(SummaryOfBenefitsResolver):
            async def resolve_one(self, plan):
                return None if int(plan.plan_id) % 2 == 0 else f"https://kp.test/{plan.plan_id}.pdf"

        resolver = OddResolver(None, None, settings, text_extractor=decode_text)
        result = await resolver.discover_year([make_plan("3"), make_plan("2"), make_plan("1")], 2025)

        assert [s.cms_plan_key for s in result.resolved] == ["2025-H0524-001-000", "2025-H0524-003-000"]
        assert [p.plan_id for p in result.missing] == ["2"]


@pytest.mark.e2e
class TestRunDiscovery:

    def _write_county(self, settings):
        path = Path(settings.dist_dir) / "years" / "2025" / "by-county" / "06075.json"
        county = {
            "year": 2025,
            "county_fips": "06075",
            "carriers": [{
                "orgName": "Kaiser Permanente",
                "contractIds": ["H0524"],
                "plans": [
                    {"contractId": "H0524", "planId": "1", "segmentId": "0", "marketingName": "KP Senior Advantage"},
                    {"contractId": "H0524", "planId": "2", "segmentId": "0", "marketingName": ""},
                ],
            }],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(county), encoding="utf-8")

    @pytest.mark.asyncio
    async def test_without_search_key_writes_empty_outputs(self, settings, tmp_path):
        results = await run_discovery(settings, [2025])

        auto_dir = tmp_path / "dist" / "benefits" / "auto"
        assert (auto_dir / "2025_sources.csv").read_text(encoding="utf-8") == "cmsPlanKey,orgName,marketingName,url\n"
        assert json.loads((auto_dir / "missing_2025.json").read_text(encoding="utf-8")) == []
        assert results[0].resolved == []

    @pytest.mark.asyncio
    async def test_with_search_key(self, settings, tmp_path):
        settings = settings.model_copy(update={"serpapi_key": "test-key"})
        self._write_county(settings)

        plan = make_plan()
        web = FakeWeb(
            results={first_query(plan): ["https://kp.test/sb.pdf"]},
            documents={"https://kp.test/sb.pdf": (200, "application/pdf", GOOD_TEXT)},
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(web)) as client:
            results = await run_discovery(settings, [2025], http_client=client, text_extractor=decode_text)

        auto_dir = tmp_path / "dist" / "benefits" / "auto"
        sources = pd.read_csv(auto_dir / "2025_sources.csv", dtype=str, keep_default_na=False)
        assert sources.to_dict(orient="records") == [{
            "cmsPlanKey": "2025-H0524-001-000",
            "orgName": "Kaiser Permanente",
            "marketingName": "KP Senior Advantage",
            "url": "https://kp.test/sb.pdf",
        }]

        missing = json.loads((auto_dir / "missing_2025.json").read_text(encoding="utf-8"))
        assert [m["cmsPlanKey"] for m in missing] == ["2025-H0524-002-000"]
        assert len(results[0].resolved) == 1
