import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from invitehub.api.deps import get_invitation_service
from invitehub.config import settings
from invitehub.main import create_app
from invitehub.services.rate_limiter import RateLimiter
from tests.fakes import FakeGeoLocator, FakeQueue, FakeRedis, build_service


class TestInvitationsApi(unittest.TestCase):
    def setUp(self):
        patcher = patch("invitehub.services.password_policy.settings.BCRYPT_ROUNDS", 4)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.service, self.parts = build_service()
        self.redis = FakeRedis()
        self.app = create_app(
            queue=FakeQueue(),
            geolocator=FakeGeoLocator(),
            rate_limiter=RateLimiter(
                client=self.redis, limit=5, window_seconds=900, clock=lambda: 1000.0
            ),
        )
        self.app.dependency_overrides[get_invitation_service] = lambda: self.service
        # No context manager: skips the lifespan hook that talks to MongoDB
        self.client = TestClient(self.app)

    def create(self, email="a@x.com", **extra):
        return self.client.post("/api/invitations", json={"email": email, "role": "user", **extra})

    def test_create_returns_invitation(self):
        response = self.create()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["email"], "a@x.com")
        self.assertEqual(body["status"], "pending")
        self.assertEqual(len(body["invite_token"]), 32)
        self.assertEqual(self.parts["queue"].names(), ["send-invitation"])

    def test_invalid_body_uses_error_envelope(self):
        response = self.client.post("/api/invitations", json={"email": "not-an-email", "role": "user"})

        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["code"], "VALIDATION_ERROR")
        self.assertEqual(error["details"][0]["field"], "email")

    def test_unknown_token_is_404(self):
        response = self.client.get("/api/invitations/missing")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_accept_flow(self):
        token = self.create().json()["invite_token"]

        weak = self.client.post(
            f"/api/invitations/{token}/accept", json={"full_name": "Ana", "password": "weak"}
        )
        self.assertEqual(weak.status_code, 400)
        self.assertIn("Weak password", weak.json()["error"]["message"])

        accepted = self.client.post(
            f"/api/invitations/{token}/accept",
            json={"full_name": "Ana Pop", "password": "Abcd1234"},
            headers={"X-Forwarded-For": "8.8.8.8, 10.0.0.1", "User-Agent": "tests"},
        )
        self.assertEqual(accepted.status_code, 201)
        self.assertEqual(accepted.json()["username"], "ana.pop")
        self.assertNotIn("password_hash", accepted.json())

        invitation = self.client.get(f"/api/invitations/{token}").json()
        self.assertEqual(invitation["status"], "accepted")
        self.assertEqual(invitation["failed_attempts"], 0)

        again = self.client.post(
            f"/api/invitations/{token}/accept", json={"full_name": "Ana Pop", "password": "Abcd1234"}
        )
        self.assertEqual(again.status_code, 409)

    def test_expires_at_without_offset_is_read_as_utc(self):
        response = self.create(expires_at="2099-01-01T00:00:00")

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["expires_at"].startswith("2099-01-01T00:00:00"))
        stored = self.parts["repo"].all()[0]
        self.assertEqual(stored.expires_at.utcoffset().total_seconds(), 0)

    def test_past_expires_at_without_offset_is_400(self):
        response = self.create(expires_at="2000-01-01T00:00:00")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "BAD_REQUEST")

    def test_forwarded_for_is_ignored_from_untrusted_peer(self):
        token = self.create().json()["invite_token"]

        self.client.post(
            f"/api/invitations/{token}/accept",
            json={"full_name": "Ana Pop", "password": "Abcd1234"},
            headers={"X-Forwarded-For": "8.8.8.8"},
        )

        self.assertEqual(self.parts["repo"].all()[0].accepted_by_ip, "testclient")

    def test_forwarded_for_is_used_behind_trusted_proxy(self):
        token = self.create().json()["invite_token"]

        with patch.object(settings, "TRUSTED_PROXIES", ["testclient"]):
            self.client.post(
                f"/api/invitations/{token}/accept",
                json={"full_name": "Ana Pop", "password": "Abcd1234"},
                headers={"X-Forwarded-For": "8.8.8.8, 10.0.0.1"},
            )

        self.assertEqual(self.parts["repo"].all()[0].accepted_by_ip, "8.8.8.8")

    def test_sends_are_rate_limited_per_client(self):
        for i in range(5):
            self.assertEqual(self.create(f"user{i}@x.com").status_code, 201)

        blocked = self.create("user5@x.com")
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.json()["error"]["code"], "TOO_MANY_REQUESTS")
        self.assertEqual(blocked.headers["Retry-After"], "800")

        resend = self.client.post("/api/invitations/resend", json={"email": "user0@x.com"})
        self.assertEqual(resend.status_code, 429)
        self.assertEqual(self.parts["queue"].names(), ["send-invitation"] * 5)

        self.assertEqual(self.client.get("/api/invitations").status_code, 200)
        [key] = self.redis.values
        self.assertTrue(key.startswith("ratelimit:invite:testclient:"))
        self.assertEqual(self.redis.ttls[key], 900)

    def test_expired_invitation_is_410(self):
        token = self.create().json()["invite_token"]
        self.parts["clock"].advance(days=8)

        response = self.client.post(
            f"/api/invitations/{token}/accept", json={"full_name": "Ana", "password": "Abcd1234"}
        )

        self.assertEqual(response.status_code, 410)
        self.assertEqual(response.json()["error"]["code"], "GONE")

    def test_resend_and_revoke(self):
        self.create()

        resent = self.client.post("/api/invitations/resend", json={"email": "a@x.com"})
        self.assertEqual(resent.status_code, 200)
        self.assertEqual(resent.json()["resend_count"], 1)

        token = resent.json()["invite_token"]
        revoked = self.client.post(f"/api/invitations/{token}/revoke")
        self.assertEqual(revoked.json()["status"], "revoked")

        missing = self.client.post("/api/invitations/resend", json={"email": "a@x.com"})
        self.assertEqual(missing.status_code, 404)

    def test_list_and_dashboard(self):
        self.create("a@x.com")
        self.create("b@x.com")

        listing = self.client.get("/api/invitations", params={"page_size": 1}).json()
        self.assertEqual(listing["total"], 2)
        self.assertEqual(listing["total_pages"], 2)
        self.assertEqual(len(listing["items"]), 1)

        dashboard = self.client.get("/api/invitations/dashboard").json()
        self.assertEqual(dashboard["counts"]["pending"], 2)
        self.assertEqual(dashboard["top_inviters"], [{"invited_by": "system", "count": 2}])

    def test_delete(self):
        token = self.create().json()["invite_token"]

        self.assertEqual(self.client.delete(f"/api/invitations/{token}").status_code, 204)
        self.assertEqual(self.client.get(f"/api/invitations/{token}").status_code, 404)

    def test_maintenance_sweeps(self):
        self.create()
        self.parts["clock"].advance(days=8)

        self.assertEqual(self.client.post("/api/invitations/maintenance/expire").json(), {"expired": 1})
        self.assertEqual(
            self.client.post("/api/invitations/maintenance/reminders").json(), {"queued": 0}
        )

    def test_infrastructure_errors_hide_details(self):
        with patch.object(
            self.parts["repo"], "find_by_token", side_effect=PyMongoError("secret")
        ):
            response = self.client.get("/api/invitations/tok")

        self.assertEqual(response.status_code, 500)
        self.assertNotIn("secret", response.text)
        self.assertEqual(response.json()["error"]["code"], "INTERNAL_ERROR")

    def test_disabled_module_is_forbidden(self):
        with patch.dict(settings.MODULES_ENABLED, {"invitations": False}):
            response = self.client.get("/api/invitations")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_correlation_id_is_echoed(self):
        response = self.client.get("/api/health", headers={"X-Correlation-ID": "abc-123"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["X-Correlation-ID"], "abc-123")


if __name__ == "__main__":
    unittest.main()
