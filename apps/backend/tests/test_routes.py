import pytest
from fastapi.testclient import TestClient

from app.agents import get_scheduler
from app.db_config import db_config
from app.rate_limit import limiter
from app.scrape import get_crawler, get_store
from core.errors import FetchError
from crawler.review_crawler import ReviewCrawler
from orchestrator import AgentScheduler
from conftest import FakeFetcher, no_sleep, paged_site


@pytest.fixture
def client(store, app_url):
    from main import app

    limiter.enabled = False
    site = paged_site(app_url, 3, 5)
    site["https://apps.shopify.com/broken-app/reviews"] = FetchError("Browserless error: 500 - down", status_code=500)
    crawler = ReviewCrawler(store, fetcher=FakeFetcher(site), pages_per_batch=2, page_delay=0, sleep=no_sleep)

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_crawler] = lambda: crawler
    app.dependency_overrides[get_scheduler] = lambda: AgentScheduler(store, crawler=crawler)
    yield TestClient(app)
    app.dependency_overrides.clear()
    limiter.enabled = True


def test_create_job_normalizes_url(client):
    response = client.post("/api/jobs", json={"app_url": "  https://apps.shopify.com/acme-reviews/ "})

    assert response.status_code == 200
    job = response.json()["data"]
    assert job["app_url"] == "https://apps.shopify.com/acme-reviews"
    assert job["app_slug"] == "acme-reviews"
    assert job["status"] == "pending"


@pytest.mark.parametrize("url", ["https://example.com/acme", "apps.shopify.com/acme", "https://apps.shopify.com/acme/reviews", ""])
def test_create_job_rejects_non_listing_urls(client, url):
    response = client.post("/api/jobs", json={"app_url": url})
    assert response.status_code == 400


def test_get_job(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/acme-reviews"}).json()["data"]["id"]

    response = client.get(f"/api/jobs/{job_id}")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == job_id


def test_get_unknown_job(client):
    assert client.get("/api/jobs/does-not-exist").status_code == 404


def test_scrape_until_complete(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/acme-reviews"}).json()["data"]["id"]

    first = client.post("/api/scrape", json={"job_id": job_id}).json()
    assert first == {"success": True, "status": "continuing", "next_page": 4, "total_pages": 5, "reviews_so_far": 9}

    second = client.post("/api/scrape", json={"job_id": job_id, "start_page": first["next_page"]}).json()
    assert second == {"success": True, "status": "completed", "total_pages": 5, "total_reviews": 15}

    job = client.get(f"/api/jobs/{job_id}").json()["data"]
    assert job["status"] == "completed"
    assert job["total_reviews_found"] == 15


def test_job_reviews_after_crawl(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/acme-reviews"}).json()["data"]["id"]
    result = client.post("/api/scrape", json={"job_id": job_id}).json()
    client.post("/api/scrape", json={"job_id": job_id, "start_page": result["next_page"]})

    response = client.get(f"/api/jobs/{job_id}/reviews")

    assert response.status_code == 200
    reviews = response.json()["data"]
    assert len(reviews) == 15
    assert all(1 <= r["star_rating"] <= 5 for r in reviews)
    assert len({r["review_hash"] for r in reviews}) == 15


def test_job_reviews_before_crawl_is_empty(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/acme-reviews"}).json()["data"]["id"]
    assert client.get(f"/api/jobs/{job_id}/reviews").json()["data"] == []


def test_job_reviews_unknown_job(client):
    assert client.get("/api/jobs/does-not-exist/reviews").status_code == 404


def test_scrape_unknown_job(client):
    response = client.post("/api/scrape", json={"job_id": "does-not-exist"})
    assert response.status_code == 404


def test_scrape_first_page_failure(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/broken-app"}).json()["data"]["id"]

    response = client.post("/api/scrape", json={"job_id": job_id})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"].startswith("Failed to fetch first page")

    # A failed job is not resumable
    retry = client.post("/api/scrape", json={"job_id": job_id, "start_page": 2})
    assert retry.status_code == 409


def test_scrape_resume_before_start(client):
    job_id = client.post("/api/jobs", json={"app_url": "https://apps.shopify.com/acme-reviews"}).json()["data"]["id"]

    response = client.post("/api/scrape", json={"job_id": job_id, "start_page": 3})
    assert response.status_code == 409


def test_create_agent(client):
    response = client.post("/api/agents", json={
        "app_url": "https://apps.shopify.com/acme-reviews",
        "run_day": 1,
        "webhook_url": "https://hooks.example.com/reviews",
    })

    assert response.status_code == 200
    agent = response.json()["data"]
    assert agent["app_slug"] == "acme-reviews"
    assert agent["run_day"] == 1
    assert agent["status"] == "active"


@pytest.mark.parametrize("payload, status", [
    ({"app_url": "https://apps.shopify.com/acme", "run_day": 7, "webhook_url": "https://hooks.example.com"}, 422),
    ({"app_url": "https://apps.shopify.com/acme", "run_day": -1, "webhook_url": "https://hooks.example.com"}, 422),
    ({"app_url": "https://apps.shopify.com/acme", "run_day": 2, "webhook_url": "ftp://hooks.example.com"}, 400),
    ({"app_url": "https://example.com/acme", "run_day": 2, "webhook_url": "https://hooks.example.com"}, 400),
])
def test_create_agent_validation(client, payload, status):
    assert client.post("/api/agents", json=payload).status_code == status


def test_list_and_get_agents(client, store, app_url):
    first = store.create_agent(app_url, "acme-reviews", 1, "https://hooks.example.com/one")
    second = store.create_agent(app_url, "acme-reviews", 4, "https://hooks.example.com/two")

    listed = client.get("/api/agents").json()["data"]
    assert {a["id"] for a in listed} == {first["id"], second["id"]}

    response = client.get(f"/api/agents/{second['id']}")
    assert response.status_code == 200
    assert response.json()["data"]["webhook_url"] == "https://hooks.example.com/two"


def test_get_unknown_agent(client):
    assert client.get("/api/agents/missing").status_code == 404


def test_agent_status_toggle(client, store, app_url):
    agent = store.create_agent(app_url, "acme-reviews", 3, "https://hooks.example.com/reviews")

    response = client.patch(f"/api/agents/{agent['id']}/status", json={"status": "paused"})

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "paused"
    assert store.get_agent(agent['id'])["status"] == "paused"


def test_agent_status_rejects_unknown_value(client, store, app_url):
    agent = store.create_agent(app_url, "acme-reviews", 3, "https://hooks.example.com/reviews")
    response = client.patch(f"/api/agents/{agent['id']}/status", json={"status": "deleted"})
    assert response.status_code == 422


def test_agent_status_unknown_agent(client):
    response = client.patch("/api/agents/missing/status", json={"status": "stopped"})
    assert response.status_code == 404


def test_run_unknown_agent(client):
    response = client.post("/api/agents/run", json={"agent_id": "missing"})
    assert response.status_code == 404


def test_run_with_nothing_due(client):
    response = client.post("/api/agents/run")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "No agents due for execution"}


def test_database_not_configured(monkeypatch):
    from main import app

    monkeypatch.setattr(db_config, "supabase_db_url", None)
    monkeypatch.setattr(db_config, "database_url", None)
    client = TestClient(app)

    response = client.get("/api/jobs/anything")

    assert response.status_code == 503
    assert response.json()["detail"] == "Database not configured"


def test_capabilities_shape(monkeypatch):
    from main import app

    monkeypatch.delenv("BROWSERLESS_API_KEY", raising=False)
    data = TestClient(app).get("/api/capabilities").json()

    assert set(data) == {"db", "renderer", "scheduler"}
    assert data["renderer"] is False


def test_env_presence_is_dev_only(monkeypatch):
    from main import app

    monkeypatch.setenv("REVIEWHARVEST_ENV", "production")
    assert TestClient(app).get("/admin/config/env").status_code == 403

    monkeypatch.setenv("REVIEWHARVEST_ENV", "dev")
    response = TestClient(app).get("/admin/config/env")
    assert response.status_code == 200
    assert "BROWSERLESS_API_KEY" in response.json()
