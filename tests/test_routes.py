import pytest
from fastapi.testclient import TestClient

from linkwatch.core.ratelimit import limiter
from linkwatch.main import create_app
from linkwatch.scans.worker import process_next_job

ROOT = "https://site.test/"
EXT = "https://ext.test/x"


@pytest.fixture
def app(settings):
    limiter.reset()
    return create_app(settings, run_workers=False)


@pytest.fixture
def api(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def site_id(api):
    r = api.post("/sites", params={"url": "site.test"})
    assert r.status_code == 201
    return r.json()["id"]


@pytest.fixture
def scanned(api, app, settings, site_id, small_site):
    """Trigger a scan over HTTP and let one worker pass finish it."""
    r = api.post(f"/scans/sites/{site_id}")
    assert r.status_code == 200
    run_id = r.json()["scan_run"]["id"]

    client = small_site.client(settings)
    try:
        assert process_next_job(app.state.session_factory, settings, client=client)
    finally:
        client.close()
    return run_id


def test_health(api):
    assert api.get("/health").json() == {"ok": True}


class TestSites:
    def test_create_and_get(self, api, site_id):
        body = api.get(f"/sites/{site_id}").json()
        assert body["url"] == ROOT
        assert body["domain"] == "site.test"
        assert body["schedule"]["enabled"] is False

    def test_create_rejects_empty_url(self, api):
        assert api.post("/sites", params={"url": " "}).status_code == 400

    def test_schedule(self, api, site_id):
        r = api.put(
            f"/sites/{site_id}/schedule",
            json={"enabled": True, "frequency": "weekly", "time_utc": "03:30", "day_of_week": 0},
        )
        assert r.status_code == 200
        schedule = r.json()["schedule"]
        assert schedule["frequency"] == "weekly"
        assert schedule["day_of_week"] == 0
        assert schedule["next_scheduled_at"] is not None

    def test_schedule_validation(self, api, site_id):
        bad_day = {"enabled": True, "frequency": "weekly", "day_of_week": 9}
        bad_time = {"enabled": True, "time_utc": "25:00"}
        assert api.put(f"/sites/{site_id}/schedule", json=bad_day).status_code == 400
        assert api.put(f"/sites/{site_id}/schedule", json=bad_time).status_code == 400
        assert api.put("/sites/999/schedule", json={"enabled": False}).status_code == 404


class TestScanRuns:
    def test_trigger_then_conflict(self, api, site_id):
        first = api.post(f"/scans/sites/{site_id}")
        assert first.status_code == 200
        assert first.json()["scan_run"]["status"] == "queued"

        assert api.post(f"/scans/sites/{site_id}").status_code == 409
        assert api.post("/scans/sites/999").status_code == 404

    def test_cancel_and_retry(self, api, site_id):
        run_id = api.post(f"/scans/sites/{site_id}").json()["scan_run"]["id"]

        r = api.post(f"/scans/runs/{run_id}/cancel")
        assert r.status_code == 200
        assert r.json()["status"] == "cancelled"
        assert r.json()["finished_at"] is not None
        assert api.post(f"/scans/runs/{run_id}/cancel").status_code == 409

        retried = api.post(f"/scans/runs/{run_id}/retry")
        assert retried.status_code == 200
        new_run = retried.json()["scan_run"]
        assert new_run["id"] != run_id
        assert new_run["status"] == "queued"
        assert api.post(f"/scans/runs/{new_run['id']}/retry").status_code == 409

    def test_list_runs_newest_first(self, api, site_id):
        first = api.post(f"/scans/sites/{site_id}").json()["scan_run"]["id"]
        api.post(f"/scans/runs/{first}/cancel")
        second = api.post(f"/scans/sites/{site_id}").json()["scan_run"]["id"]

        body = api.get(f"/scans/sites/{site_id}/runs").json()
        assert [r["id"] for r in body["items"]] == [second, first]
        assert body["total_matching"] == 2

    def test_unknown_run(self, api):
        assert api.get("/scans/runs/999").status_code == 404
        assert api.get("/scans/runs/999/links").status_code == 404


class TestScanResults:
    def test_run_and_links(self, api, scanned):
        run = api.get(f"/scans/runs/{scanned}").json()
        assert run["status"] == "completed"
        assert run["total_links"] == 5

        links = api.get(f"/scans/runs/{scanned}/links").json()
        assert links["total_matching"] == 5
        assert links["items"][0]["link_url"] == EXT

        broken = api.get(f"/scans/runs/{scanned}/links", params={"classification": "broken"}).json()
        assert [l["link_url"] for l in broken["items"]] == [ROOT + "missing"]

    def test_occurrences(self, api, scanned):
        ext = api.get(f"/scans/runs/{scanned}/links").json()["items"][0]
        occ = api.get(f"/scans/links/{ext['id']}/occurrences").json()
        assert occ["total_matching"] == 3
        assert api.get("/scans/links/999/occurrences").status_code == 404

    def test_diff_against_itself(self, api, scanned):
        body = api.get("/scans/diff", params={"a": scanned, "b": scanned}).json()
        assert body["unchanged_count"] == 5
        assert body["added"] == body["removed"] == body["changed"] == []
        assert api.get("/scans/diff", params={"a": scanned, "b": 999}).status_code == 404


class TestIgnoreRoutes:
    def test_rule_lifecycle(self, api, site_id):
        r = api.post("/ignores/rules", json={"site_id": site_id, "rule_type": "domain", "pattern": "ext.test"})
        assert r.status_code == 201
        rule = r.json()

        listed = api.get("/ignores/rules", params={"site_id": site_id}).json()
        assert [x["id"] for x in listed["items"]] == [rule["id"]]

        toggled = api.patch(f"/ignores/rules/{rule['id']}", json={"is_enabled": False}).json()
        assert toggled["is_enabled"] is False

        assert api.delete(f"/ignores/rules/{rule['id']}").json() == {"ok": True}
        assert api.delete(f"/ignores/rules/{rule['id']}").status_code == 404

    def test_invalid_rules(self, api):
        bad_regex = {"rule_type": "regex", "pattern": "("}
        bad_type = {"rule_type": "glob", "pattern": "x"}
        assert api.post("/ignores/rules", json=bad_regex).status_code == 400
        assert api.post("/ignores/rules", json=bad_type).status_code == 422

    def test_reapply_and_unignore(self, api, site_id, scanned):
        api.post("/ignores/rules", json={"site_id": site_id, "rule_type": "contains", "pattern": "ext.test"})

        result = api.post(f"/ignores/runs/{scanned}/reapply").json()
        assert result["applied"] is True
        assert result["ignored_count"] == 1

        ignored = api.get(f"/scans/runs/{scanned}/ignored").json()
        assert [l["link_url"] for l in ignored["items"]] == [EXT]
        assert ignored["items"][0]["ignore_reason"] == "Ignored by rule: contains ext.test"
        occ = api.get(f"/scans/ignored/{ignored['items'][0]['id']}/occurrences").json()
        assert occ["total_matching"] == 3

        again = api.post(f"/ignores/runs/{scanned}/reapply").json()
        assert again["applied"] is False

        restored = api.post(f"/ignores/runs/{scanned}/unignore", json={"link_url": EXT})
        assert restored.status_code == 200
        assert restored.json()["ignored"] is False
        assert api.post(f"/ignores/runs/{scanned}/unignore", json={"link_url": "https://nope.test/"}).status_code == 404

    def test_manual_ignore(self, api, scanned):
        missing = api.get(f"/scans/runs/{scanned}/links", params={"classification": "broken"}).json()["items"][0]

        r = api.post(f"/ignores/links/{missing['id']}", json={"mode": "this_scan"})
        assert r.status_code == 200
        assert r.json()["ignored_count"] == 1
        assert r.json()["rule"] is None

        run = api.get(f"/scans/runs/{scanned}/links", params={"classification": "broken"}).json()
        assert run["total_matching"] == 0
        assert api.post(f"/ignores/links/{missing['id']}", json={"mode": "this_scan"}).status_code == 404
