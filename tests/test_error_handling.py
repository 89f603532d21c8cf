import os
import unittest
from unittest.mock import patch

from cotiz.db import close_db
from cotiz.routes.approval_routes import LEVEL_SERVICE, _clear_level_cache_for_tests
from cotiz.ui_strings import error_message
from tests.approval_utils import build_test_app
from tests.helpers.temp_db import TempDbSandbox


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        with patch.dict(os.environ, {"FLASK_ENV": "development"}):
            self.app = build_test_app(
                self._temp_db,
                TESTING=False,
                AUTH_ENABLED=True,
                DB_AUTO_INIT=True,
                APP_USERS="ana@cotiz.test:segredo:client-perm:Ana:admin:ana",
                SECRET_KEY="test-secret",
            )
        self.client = self.app.test_client()
        self.headers = {"X-Client-Id": "client-perm"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/aprovacoes/niveis", headers=self.headers)
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertEqual(response.headers.get("X-Request-Id"), payload.get("request_id"))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_invalid_credentials_are_rejected(self) -> None:
        response = self.client.post("/api/auth/login", json={"email": "ana@cotiz.test", "password": "errada"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json().get("error"), "auth_invalid_credentials")

        missing = self.client.post("/api/auth/login", json={"email": "ana@cotiz.test"})
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.get_json().get("error"), "auth_missing_credentials")

    def test_login_opens_session_scoped_to_client(self) -> None:
        login = self.client.post("/api/auth/login", json={"email": "ana@cotiz.test", "password": "segredo"})
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.get_json().get("client_id"), "client-perm")
        self.assertEqual(login.get_json().get("role"), "admin")

        created = self.client.post(
            "/api/aprovacoes/niveis",
            json={"name": "Diretoria", "amount_threshold": "1000", "approvers": ["ana"]},
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.get_json()["level"]["client_id"], "client-perm")

        self.client.post("/api/auth/logout")
        after_logout = self.client.get("/api/aprovacoes/niveis")
        self.assertEqual(after_logout.status_code, 401)


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = build_test_app(self._temp_db)
        self.client = self.app.test_client()
        self.headers = {"X-Client-Id": "client-error-api", "X-User-Id": "buyer-1"}
        _clear_level_cache_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        _clear_level_cache_for_tests()
        self._temp_db.cleanup()

    def test_configuration_error_payload(self) -> None:
        quote = self.client.post("/api/cotacoes", headers=self.headers, json={"title": "Papel", "total": "50"})
        self.assertEqual(quote.status_code, 201)

        response = self.client.post(
            f"/api/cotacoes/{quote.get_json()['quote']['id']}/solicitar-aprovacao",
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 422)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "approval_levels_not_configured")
        self.assertEqual(payload.get("message"), error_message("approval_levels_not_configured"))
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_validation_error_for_non_object_body(self) -> None:
        response = self.client.post("/api/cotacoes", headers=self.headers, json=["x"])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json().get("error"), "validation_error")

    def test_not_found_for_unknown_level(self) -> None:
        response = self.client.patch(
            "/api/aprovacoes/niveis/999",
            headers={**self.headers, "X-User-Role": "admin"},
            json={"name": "X"},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json().get("error"), "approval_level_not_found")

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        with patch.object(LEVEL_SERVICE, "list_levels", side_effect=RuntimeError("stack_secret_token")):
            response = self.client.get("/api/aprovacoes/niveis", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)


if __name__ == "__main__":
    unittest.main()
