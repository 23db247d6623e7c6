"""Test authentication, role resolution and client keying."""

from datetime import timedelta
from types import SimpleNamespace

from app.auth import create_access_token, decode_token
from app.config import get_settings
from app.rate_limit import get_client_ip, is_trusted_proxy
from jose import jwt

from api_helpers import bearer


class TestTokens:
    """Test JWT creation and decoding."""

    def test_create_and_decode_token(self):
        settings = get_settings()
        token = create_access_token("prov-near", "provider", settings)
        payload = decode_token(token, settings)
        assert payload["sub"] == "prov-near"
        assert payload["role"] == "PROVIDER"
        assert payload["type"] == "access"
        assert "exp" in payload and "iat" in payload

    def test_token_signed_with_configured_secret(self):
        settings = get_settings()
        token = create_access_token("cust-1", "CUSTOMER", settings)
        assert jwt.get_unverified_header(token)["alg"] == settings.jwt_algorithm


class TestCurrentActor:
    """Test how bearer tokens become actors."""

    def test_missing_token(self, client):
        response = client.get("/jobs/any")
        assert response.status_code == 401
        assert "Not authenticated" in response.json()["detail"]

    def test_garbage_token(self, client):
        response = client.get("/jobs/any", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    def test_expired_token(self, client):
        token = create_access_token(
            "cust-1", "CUSTOMER", get_settings(), expires_delta=timedelta(minutes=-5)
        )
        response = client.get("/jobs/any", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_wrong_secret(self, client):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "admin-1", "role": "ADMIN"}, "someone-elses-secret", algorithm=settings.jwt_algorithm
        )
        response = client.get("/jobs/any", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_system_role_not_accepted_from_tokens(self, client):
        response = client.get("/jobs/any", headers=bearer("cron", "SYSTEM"))
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token payload"

    def test_unknown_role(self, client):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "x", "role": "PLUMBER"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        response = client.get("/jobs/any", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_valid_token_reaches_workflow(self, client, customer_headers):
        response = client.get("/jobs/missing", headers=customer_headers)
        assert response.status_code == 404

    def test_admin_routes_reject_customers(self, client, customer_headers):
        response = client.post(
            "/admin/jobs/any/dispatch-now", headers=customer_headers
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"


class TestClientKeying:
    """Test rate-limit client identification."""

    def _request(self, host, forwarded=None):
        headers = {"x-forwarded-for": forwarded} if forwarded else {}
        return SimpleNamespace(client=SimpleNamespace(host=host), headers=headers)

    def test_trusted_proxy_ranges(self):
        assert is_trusted_proxy("10.1.2.3")
        assert is_trusted_proxy("127.0.0.1")
        assert not is_trusted_proxy("8.8.8.8")
        assert not is_trusted_proxy("not-an-ip")

    def test_forwarded_for_behind_trusted_proxy(self):
        request = self._request("10.0.0.5", "203.0.113.9, 10.0.0.5")
        assert get_client_ip(request) == "203.0.113.9"

    def test_forwarded_for_ignored_from_untrusted_peer(self):
        request = self._request("198.51.100.7", "203.0.113.9")
        assert get_client_ip(request) == "198.51.100.7"

    def test_direct_peer_without_header(self):
        assert get_client_ip(self._request("10.0.0.5")) == "10.0.0.5"
