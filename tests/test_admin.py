"""Tests for the admin API."""

import csv
import io

from app.core.policy_config import BotPolicyConfig

from conftest import ADMIN_HEADERS, CHROME_HEADERS, GPTBOT_UA


class TestAuth:
    def test_missing_key_rejected(self, client):
        r = client.get("/admin/bot-policy")
        assert r.status_code == 401

    def test_wrong_key_rejected(self, client):
        r = client.get("/admin/bot-policy", headers={"X-API-Key": "nope"})
        assert r.status_code == 401

    def test_query_key_accepted(self, client):
        r = client.get("/admin/bot-policy?key=test-admin-key")
        assert r.status_code == 200

    def test_admin_responses_not_cached(self, client):
        r = client.get("/admin/bot-policy", headers=ADMIN_HEADERS)
        assert r.headers["X-Robots-Tag"] == "noindex, nofollow"
        assert r.headers["Cache-Control"].startswith("no-store")


class TestBotPolicy:
    def test_get_current(self, client):
        r = client.get("/admin/bot-policy", headers=ADMIN_HEADERS)
        policy = r.json()["policy"]
        assert policy["enabled"] is True
        assert policy["confidence_threshold"] == 70
        assert policy["paywall_path"] == "/paywall"
        assert policy["allowed_paths_for_authorized_bots"] == sorted(policy["allowed_paths_for_authorized_bots"])

    def test_put_replaces_policy(self, client, gate):
        r = client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={
            "confidence_threshold": 95,
            "allowed_paths_for_authorized_bots": ["/", "/menu/"],
            "blocked_ips": ["203.0.113.9"],
        })
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["policy"]["allowed_paths_for_authorized_bots"] == ["/", "/menu"]
        assert gate.policy.confidence_threshold == 95
        assert "203.0.113.9" in gate.policy.blocked_ips

    def test_put_takes_effect_on_next_request(self, client):
        headers = {"user-agent": GPTBOT_UA, "accept-language": "en", "accept-encoding": "gzip",
                   "x-forwarded-for": "203.0.113.70"}
        assert client.get("/menu", headers=headers).status_code == 302

        client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={"enabled": False})
        assert client.get("/menu", headers=headers).status_code == 200

    def test_invalid_policy_keeps_old_one(self, client, gate):
        before = gate.policy
        r = client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={"paywall_path": "/"})
        assert r.status_code == 422
        assert gate.policy is before

    def test_paywall_path_cannot_move_at_runtime(self, client, gate):
        before = gate.policy
        r = client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={"paywall_path": "/subscribe"})
        assert r.status_code == 422
        assert "TG_PAYWALL_PATH" in r.json()["detail"]
        assert gate.policy is before

    def test_same_paywall_path_accepted(self, client, gate):
        r = client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={"paywall_path": "/paywall/", "confidence_threshold": 80})
        assert r.status_code == 200
        assert gate.policy.confidence_threshold == 80

    def test_unknown_field_rejected(self, client, gate):
        r = client.put("/admin/bot-policy", headers=ADMIN_HEADERS, json={"threshold": 10})
        assert r.status_code == 422
        assert gate.policy == BotPolicyConfig()


class TestDecisionsAndAnalytics:
    def _traffic(self, client, gate):
        client.get("/menu", headers={"user-agent": GPTBOT_UA, "x-forwarded-for": "203.0.113.80"})
        client.get("/about", headers={**CHROME_HEADERS, "x-forwarded-for": "198.51.100.80"})
        client.get("/blog", headers={**CHROME_HEADERS, "x-forwarded-for": "198.51.100.80"})
        client.portal.call(gate.emitter.drain)

    def test_decisions_newest_first(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/decisions?limit=2", headers=ADMIN_HEADERS)
        assert r.status_code == 200
        body = r.json()
        assert body["count"] == 2
        assert [d["path"] for d in body["decisions"]] == ["/blog", "/about"]
        assert body["decisions"][0]["decision"]["action"] == "ALLOW"

    def test_decisions_limit_validated(self, client):
        r = client.get("/admin/decisions?limit=0", headers=ADMIN_HEADERS)
        assert r.status_code == 422

    def test_analytics(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/analytics", headers=ADMIN_HEADERS)
        analytics = r.json()["analytics"]
        assert analytics["total_requests"] == 3
        assert analytics["bot_count"] == 1
        assert analytics["human_count"] == 2
        assert analytics["unique_ips"] == 2
        assert analytics["categories"]["ai_assistant"] == 1
        assert analytics["actions"] == {"REDIRECT_PAYWALL": 1, "ALLOW": 2}
        assert analytics["tracked_identities"] == 2

    def test_purge_behavior_cache(self, client, gate):
        self._traffic(client, gate)
        r = client.post("/admin/behavior-cache/purge", headers=ADMIN_HEADERS)
        assert r.status_code == 200
        # Nothing has aged past the TTL yet
        assert r.json() == {"removed": 0, "remaining": 2}


class TestDecisionLog:
    def _traffic(self, client, gate):
        client.get("/menu", headers={"user-agent": GPTBOT_UA, "x-forwarded-for": "203.0.113.81"})
        client.get("/about", headers={"user-agent": "curl/8.4.0", "x-forwarded-for": "203.0.113.82"})
        client.get("/blog", headers={**CHROME_HEADERS, "x-forwarded-for": "198.51.100.81"})
        client.portal.call(gate.emitter.drain)

    def test_filter_by_ip(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/decisions?ip=203.0.113.82", headers=ADMIN_HEADERS)
        body = r.json()
        assert body["count"] == 1
        assert body["decisions"][0]["path"] == "/about"
        assert body["decisions"][0]["verdict"]["category"] == "automation_tool"

    def test_filter_by_category(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/decisions?category=human", headers=ADMIN_HEADERS)
        assert [d["path"] for d in r.json()["decisions"]] == ["/blog"]

    def test_export_json(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/decisions/export", headers=ADMIN_HEADERS)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("application/json")
        assert r.headers["content-disposition"].startswith("attachment; filename=bot_decisions_")
        assert r.headers["content-disposition"].endswith(".json")
        assert r.json()["count"] == 3

    def test_export_csv(self, client, gate):
        self._traffic(client, gate)
        r = client.get("/admin/decisions/export?format=csv", headers=ADMIN_HEADERS)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert r.headers["content-disposition"].endswith(".csv")
        rows = list(csv.DictReader(io.StringIO(r.text)))
        assert len(rows) == 3
        assert rows[0]["path"] == "/blog"
        assert rows[2]["category"] == "ai_assistant"
        assert rows[2]["action"] == "REDIRECT_PAYWALL"
        assert rows[2]["ip"] == "203.0.113.81"

    def test_export_csv_empty_has_header(self, client):
        r = client.get("/admin/decisions/export?format=csv", headers=ADMIN_HEADERS)
        assert r.text.splitlines()[0].startswith("timestamp,ip,user_agent_hash")

    def test_export_unknown_format(self, client):
        r = client.get("/admin/decisions/export?format=xml", headers=ADMIN_HEADERS)
        assert r.status_code == 422

    def test_clear(self, client, gate):
        self._traffic(client, gate)
        r = client.delete("/admin/decisions", headers=ADMIN_HEADERS)
        assert r.json() == {"success": True, "cleared": 3}
        assert client.get("/admin/decisions", headers=ADMIN_HEADERS).json()["count"] == 0

    def test_clear_requires_key(self, client):
        assert client.delete("/admin/decisions").status_code == 401

    def test_analytics_daily(self, client, gate):
        self._traffic(client, gate)
        daily = client.get("/admin/analytics", headers=ADMIN_HEADERS).json()["analytics"]["daily"]
        assert sum(daily.values()) == 3
        assert all(len(day) == 10 for day in daily)
