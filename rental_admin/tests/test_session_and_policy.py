import json
import os
import unittest
import urllib.error
from unittest import mock

import support
from rental_admin.services import policy_service
from rental_admin.services.policy_service import (
    AccessDeniedError,
    PolicyServiceError,
    check_access,
    convert_method_to_operation,
)
from rental_admin.services.session_service import create_session, get_session, remove_session


SESSION = {"roqUserId": "roq-1", "tenantId": "tenant-1", "roles": ["owner"]}


class _FakeResponse:
    def __init__(self, payload, status=200):
        self.status = status
        self._body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False


class SessionTokenTests(unittest.TestCase):
    def test_issued_token_round_trips(self):
        token = create_session(SESSION)
        session = get_session(token)
        self.assertEqual(session["roqUserId"], "roq-1")
        self.assertEqual(session["tenantId"], "tenant-1")
        self.assertEqual(session["roles"], ["owner"])

    def test_tampered_token_is_rejected(self):
        token = create_session(SESSION)
        encoded, signature = token.split(".", 1)
        forged = create_session({**SESSION, "tenantId": "tenant-2"}).split(".", 1)[0]
        self.assertIsNone(get_session(f"{forged}.{signature}"))
        self.assertIsNone(get_session(f"{encoded}.not-a-signature"))
        self.assertIsNone(get_session("garbage"))
        self.assertIsNone(get_session(None))

    def test_expired_token_is_rejected(self):
        self.assertIsNone(get_session(create_session(SESSION, ttl_seconds=-1)))

    def test_token_without_tenant_is_rejected(self):
        self.assertIsNone(get_session(create_session({"roqUserId": "roq-1", "roles": []})))

    def test_removed_token_is_revoked(self):
        token = create_session(SESSION)
        remove_session(token)
        self.assertIsNone(get_session(token))


class OperationMappingTests(unittest.TestCase):
    def test_methods_map_to_operations(self):
        self.assertEqual(convert_method_to_operation("GET"), "read")
        self.assertEqual(convert_method_to_operation("post"), "create")
        self.assertEqual(convert_method_to_operation("PUT"), "update")
        self.assertEqual(convert_method_to_operation("PATCH"), "update")
        self.assertEqual(convert_method_to_operation("DELETE"), "delete")

    def test_unknown_method_raises(self):
        with self.assertRaises(ValueError):
            convert_method_to_operation("TRACE")


class PolicyClientTests(unittest.TestCase):
    def setUp(self):
        self.requests = []

    def _respond_with(self, response):
        def _urlopen(request, timeout=None):
            self.requests.append(request)
            if isinstance(response, Exception):
                raise response
            return response

        return mock.patch.object(policy_service.urllib.request, "urlopen", _urlopen)

    def test_allowed_decision_passes(self):
        with self._respond_with(_FakeResponse({"allowed": True})):
            check_access(SESSION, "rental", "update", "rental-1")

        request = self.requests[0]
        self.assertEqual(request.full_url, "http://policy.invalid/access/check")
        self.assertEqual(request.get_method(), "POST")
        self.assertEqual(
            json.loads(request.data.decode("utf-8")),
            {
                "userId": "roq-1",
                "tenantId": "tenant-1",
                "roles": ["owner"],
                "entity": "rental",
                "entityId": "rental-1",
                "operation": "update",
            },
        )

    def test_denied_decision_raises_with_reason(self):
        with self._respond_with(_FakeResponse({"allowed": False, "reason": "not a tenant member"})):
            with self.assertRaises(AccessDeniedError) as ctx:
                check_access(SESSION, "rental", "delete", "rental-1")
        self.assertEqual(str(ctx.exception), "not a tenant member")

    def test_client_error_status_denies(self):
        error = urllib.error.HTTPError("http://policy.invalid/access/check", 403, "Forbidden", None, None)
        with self._respond_with(error):
            with self.assertRaises(AccessDeniedError):
                check_access(SESSION, "tool", "read")

    def test_server_error_status_is_service_failure(self):
        error = urllib.error.HTTPError("http://policy.invalid/access/check", 502, "Bad Gateway", None, None)
        with self._respond_with(error):
            with self.assertRaises(PolicyServiceError):
                check_access(SESSION, "tool", "read")

    def test_connection_error_is_service_failure(self):
        with self._respond_with(urllib.error.URLError("timed out")):
            with self.assertRaises(PolicyServiceError):
                check_access(SESSION, "tool", "read")

    def test_invalid_json_is_service_failure(self):
        with self._respond_with(_FakeResponse(b"<html>")):
            with self.assertRaises(PolicyServiceError):
                check_access(SESSION, "tool", "read")

    def test_bearer_token_is_forwarded(self):
        with mock.patch.dict(os.environ, {"POLICY_API_TOKEN": "s3cret"}):
            with self._respond_with(_FakeResponse({"allowed": True})):
                check_access(SESSION, "outlet", "read")
        self.assertEqual(self.requests[0].get_header("Authorization"), "Bearer s3cret")

    def test_missing_base_url_is_service_failure(self):
        with mock.patch.dict(os.environ, {"POLICY_API_BASE_URL": ""}):
            with self.assertRaises(PolicyServiceError):
                check_access(SESSION, "tool", "read")


class AuthRouteTests(support.AppTestCase):
    def test_session_exchange_sets_cookie_session(self):
        response = self.login_cookie()
        self.assertEqual(response.json()["user"]["roqUserId"], "roq-1")
        self.assertIn("rental_admin_session=", response.headers.get("set-cookie", ""))

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["tenantId"], "tenant-1")

        rental = self.client.get("/api/rentals/rental-1")
        self.assertEqual(rental.status_code, 200)

    def test_session_exchange_rejects_bad_token(self):
        response = self.client.post("/api/auth/session", json={"sessionToken": "bad.token"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"message": "Invalid session token."})

    def test_session_exchange_rejects_unexpected_fields(self):
        response = self.client.post("/api/auth/session", json={"sessionToken": self.token, "roles": ["admin"]})
        self.assertEqual(response.status_code, 422)

    def test_logout_clears_cookie_and_revokes_token(self):
        token = create_session(SESSION)
        headers = {"X-Session-Token": token}
        self.assertEqual(self.client.get("/api/auth/me", headers=headers).status_code, 200)

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        self.assertEqual(self.client.get("/api/auth/me", headers=headers).status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)

    def test_revoked_token_ends_cookie_session(self):
        self.login_cookie()
        self.assertEqual(self.client.get("/api/auth/me").status_code, 200)

        remove_session(self.token)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        self.assertEqual(self.client.get("/api/rentals/rental-1").status_code, 401)

    def test_stale_header_token_does_not_fall_back_to_cookie(self):
        self.login_cookie()
        stale = create_session(SESSION, ttl_seconds=-1)
        self.assertEqual(self.client.get("/api/auth/me", headers={"X-Session-Token": stale}).status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 200)

    def test_cookie_logout_revokes_token(self):
        self.login_cookie()
        self.assertEqual(self.client.post("/api/auth/logout").status_code, 200)
        self.assertIsNone(get_session(self.token))
        self.assertEqual(self.client.get("/api/auth/me", headers=self.headers).status_code, 401)


if __name__ == "__main__":
    unittest.main()
