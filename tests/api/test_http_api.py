import os
import sys
import tempfile
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from assistant_gateway.api.app import create_app
from assistant_gateway.app_config import RuntimeEnv, parse_app_config
from assistant_gateway.assistant.events import AssistantMessage, SessionError, SessionIdle
from assistant_gateway.bootstrap import bootstrap_runtime
from assistant_gateway.operations.supervisor import OperationsSupervisor
from tests.fakes import FakeClientFactory, FakeTelegramApi


def _responder(session_id: str, prompt: str):
    if prompt == "fail":
        return [SessionError(session_id, "assistant exploded")]
    return [AssistantMessage(session_id, f"echo: {prompt}"), SessionIdle(session_id)]


async def _closed_port(port: int) -> bool:
    return False


class HttpApiTestBase(unittest.TestCase):
    config_overrides: dict = {}

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = os.path.realpath(self._tmp.name)
        for name in ("alpha", "beta", ".git"):
            os.mkdir(os.path.join(self.base, name))

        config = {"WorkingDirectory": self.base, "Telegram": {"AllowedChatId": "42"}, **self.config_overrides}
        self.app_config = parse_app_config(config)
        env = RuntimeEnv(
            provider_api_key="test-key",
            provider_env_var="ANTHROPIC_API_KEY",
            telegram_bot_token=None,
            telegram_allowed_chat_id=None,
            working_directory=None,
        )
        self.factory = FakeClientFactory(_responder)
        supervisor = OperationsSupervisor(
            self.app_config.frontend,
            repo_root=self.base,
            diagnostic_commands=[[sys.executable, "-c", "print('ok')"]],
            port_probe=_closed_port,
        )
        self.runtime = bootstrap_runtime(
            self.app_config,
            env,
            client_factory=self.factory,
            telegram_api=FakeTelegramApi(),
            supervisor=supervisor,
        )
        self.app = create_app(self.runtime, manage_lifecycle=False)
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self._tmp.cleanup()

    def _create_session(self, **body) -> str:
        response = self.client.post("/api/chat/session", json=body)
        self.assertEqual(200, response.status_code, response.text)
        return response.json()["sessionId"]

    def assertError(self, response, status_code: int, code: str) -> dict:
        self.assertEqual(status_code, response.status_code, response.text)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertEqual(code, payload["error"]["code"])
        return payload["error"]


class HealthTests(HttpApiTestBase):
    def test_health_reports_runtime_facts(self) -> None:
        self._create_session()
        payload = self.client.get("/api/health").json()

        self.assertEqual("healthy", payload["status"])
        self.assertTrue(payload["clientReady"])
        self.assertEqual(1, payload["activeSessions"])
        self.assertEqual(self.base, payload["currentDirectory"])


class ChatApiTests(HttpApiTestBase):
    def test_create_session_uses_default_model(self) -> None:
        payload = self.client.post("/api/chat/session", json={}).json()

        self.assertEqual(self.app_config.default_model, payload["model"])
        self.assertEqual("web", payload["channel"])
        self.assertEqual("idle", payload["status"])
        self.assertEqual(payload["createdAt"], payload["lastUpdatedAt"])

    def test_create_session_with_explicit_model(self) -> None:
        session_id = self._create_session(model="gpt-5")
        status = self.client.get(f"/api/chat/status/{session_id}").json()
        self.assertEqual("gpt-5", status["model"])

    def test_send_returns_final_content(self) -> None:
        session_id = self._create_session()
        response = self.client.post("/api/chat/send", json={"sessionId": session_id, "prompt": "hi"})

        self.assertEqual(200, response.status_code, response.text)
        payload = response.json()
        self.assertEqual("echo: hi", payload["content"])
        self.assertTrue(payload["isComplete"])
        self.assertEqual("idle", payload["status"])

        status = self.client.get(f"/api/chat/status/{session_id}").json()
        self.assertEqual("hi", status["lastPrompt"])
        self.assertEqual("echo: hi", status["lastResponsePreview"])

    def test_send_requires_prompt_and_session(self) -> None:
        session_id = self._create_session()
        error = self.assertError(
            self.client.post("/api/chat/send", json={"sessionId": session_id, "prompt": "  "}),
            400,
            "ERR_INVALID_ARGUMENT",
        )
        self.assertEqual("Prompt is required", error["message"])
        self.assertError(self.client.post("/api/chat/send", json={"prompt": "hi"}), 400, "ERR_INVALID_ARGUMENT")

    def test_send_to_unknown_session_is_404(self) -> None:
        error = self.assertError(
            self.client.post("/api/chat/send", json={"sessionId": "nope", "prompt": "hi"}),
            404,
            "ERR_SESSION_NOT_FOUND",
        )
        self.assertEqual("Session nope not found", error["message"])

    def test_assistant_error_is_500_and_recorded(self) -> None:
        session_id = self._create_session()
        error = self.assertError(
            self.client.post("/api/chat/send", json={"sessionId": session_id, "prompt": "fail"}),
            500,
            "ERR_CLIENT_FAULT",
        )
        self.assertEqual("assistant exploded", error["message"])

        status = self.client.get(f"/api/chat/status/{session_id}").json()
        self.assertEqual("error", status["status"])
        self.assertEqual("assistant exploded", status["lastError"])

    def test_malformed_body_is_400(self) -> None:
        response = self.client.post(
            "/api/chat/send", content="not json", headers={"Content-Type": "application/json"}
        )
        self.assertError(response, 400, "ERR_BAD_REQUEST")

    def test_update_model(self) -> None:
        session_id = self._create_session()
        response = self.client.post("/api/chat/model", json={"sessionId": session_id, "model": "gpt-5"})

        self.assertEqual({"message": "Model updated successfully", "model": "gpt-5"}, response.json())
        self.assertEqual("gpt-5", self.client.get(f"/api/chat/status/{session_id}").json()["model"])
        self.assertError(
            self.client.post("/api/chat/model", json={"sessionId": session_id, "model": ""}),
            400,
            "ERR_INVALID_ARGUMENT",
        )
        self.assertError(
            self.client.post("/api/chat/model", json={"sessionId": "nope", "model": "gpt-5"}),
            404,
            "ERR_SESSION_NOT_FOUND",
        )

    def test_sessions_and_status_listing(self) -> None:
        first = self._create_session()
        second = self._create_session()
        self.client.post("/api/chat/send", json={"sessionId": first, "prompt": "bump"})

        self.assertCountEqual([first, second], self.client.get("/api/chat/sessions").json())
        statuses = self.client.get("/api/chat/status").json()
        self.assertEqual([first, second], [s["sessionId"] for s in statuses])
        self.assertEqual(2, len(self.client.get("/api/chat/status", params={"channel": "WEB"}).json()))
        self.assertEqual([], self.client.get("/api/chat/status", params={"channel": "telegram"}).json())
        self.assertError(self.client.get("/api/chat/status/nope"), 404, "ERR_SESSION_NOT_FOUND")

    def test_batch_reports_per_session_results(self) -> None:
        ok = self._create_session()
        response = self.client.post("/api/chat/batch", json={"sessionIds": [ok, "nope", ok.upper()], "prompt": "go"})

        self.assertEqual(200, response.status_code, response.text)
        results = {r["sessionId"]: r for r in response.json()}
        self.assertEqual(2, len(results))
        self.assertEqual("completed", results[ok]["status"])
        self.assertEqual("echo: go", results[ok]["content"])
        self.assertEqual("error", results["nope"]["status"])
        self.assertEqual("Session nope not found", results["nope"]["error"])

    def test_batch_validation(self) -> None:
        self.assertError(
            self.client.post("/api/chat/batch", json={"sessionIds": [], "prompt": "go"}), 400, "ERR_INVALID_ARGUMENT"
        )
        self.assertError(
            self.client.post("/api/chat/batch", json={"sessionIds": ["a"], "prompt": ""}), 400, "ERR_INVALID_ARGUMENT"
        )

    def test_delete_session_is_idempotent(self) -> None:
        session_id = self._create_session()

        first = self.client.delete(f"/api/chat/session/{session_id}")
        second = self.client.delete(f"/api/chat/session/{session_id}")

        self.assertEqual({"message": "Session deleted"}, first.json())
        self.assertEqual(200, second.status_code)
        self.assertEqual([], self.client.get("/api/chat/sessions").json())
        self.assertTrue(self.factory.session(session_id).disposed)


class DirectoryApiTests(HttpApiTestBase):
    def test_list_and_current(self) -> None:
        payload = self.client.get("/api/directory").json()

        self.assertEqual(self.base, payload["baseDirectory"])
        self.assertEqual(["alpha", "beta"], [d["name"] for d in payload["directories"]])
        self.assertEqual(os.path.join(self.base, "alpha"), payload["directories"][0]["fullPath"])

        current = self.client.get("/api/directory/current").json()
        self.assertEqual(self.base, current["currentDirectory"])

    def test_switch_clears_sessions(self) -> None:
        self._create_session()
        target = os.path.join(self.base, "beta")
        response = self.client.post("/api/directory/switch", json={"directoryPath": target})

        self.assertEqual(200, response.status_code, response.text)
        self.assertEqual(target, response.json()["currentDirectory"])
        self.assertEqual(target, self.client.get("/api/directory/current").json()["currentDirectory"])
        self.assertEqual([], self.client.get("/api/chat/sessions").json())
        self.assertEqual(target, self.factory.current.working_directory)

    def test_switch_errors(self) -> None:
        self.assertError(
            self.client.post("/api/directory/switch", json={"directoryPath": ""}), 400, "ERR_INVALID_ARGUMENT"
        )
        error = self.assertError(
            self.client.post("/api/directory/switch", json={"directoryPath": os.path.join(self.base, "gone")}),
            400,
            "ERR_DIRECTORY_NOT_FOUND",
        )
        self.assertIn("Directory not found", error["message"])

        with tempfile.TemporaryDirectory() as outside:
            self.assertError(
                self.client.post("/api/directory/switch", json={"directoryPath": outside}),
                400,
                "ERR_INVALID_ARGUMENT",
            )
        self.assertEqual(self.base, self.client.get("/api/directory/current").json()["currentDirectory"])


class UnrestrictedDirectoryApiTests(HttpApiTestBase):
    config_overrides = {"RestrictToWorkingDirectory": "false"}

    def test_switch_outside_base_is_allowed(self) -> None:
        with tempfile.TemporaryDirectory() as outside:
            outside = os.path.realpath(outside)
            response = self.client.post("/api/directory/switch", json={"directoryPath": outside})
            self.assertEqual(200, response.status_code, response.text)
            self.assertEqual(outside, self.client.get("/api/directory/current").json()["currentDirectory"])


class ChannelApiTests(HttpApiTestBase):
    def test_channel_listing(self) -> None:
        channels = self.client.get("/api/channel").json()

        self.assertEqual(
            [("telegram", False, "disabled"), ("discord", False, "not_implemented"),
             ("slack", False, "not_implemented"), ("line", False, "not_implemented")],
            [(c["name"], c["enabled"], c["status"]) for c in channels],
        )

    def test_telegram_settings(self) -> None:
        payload = self.client.get("/api/channel/telegram").json()
        self.assertFalse(payload["enabled"])
        self.assertEqual(42, payload["allowedChatId"])
        self.assertEqual(self.app_config.telegram.default_model, payload["defaultModel"])


class OperationsApiTests(HttpApiTestBase):
    def test_status_and_stop_without_process(self) -> None:
        status = self.client.get("/api/operations/status").json()
        self.assertFalse(status["frontend"]["isRunning"])
        self.assertFalse(status["frontend"]["portOpen"])

        stopped = self.client.post("/api/operations/frontend/stop").json()
        self.assertEqual("not_running", stopped["status"])
        self.assertEqual("stop_frontend", stopped["action"])

    def test_diagnostics(self) -> None:
        payload = self.client.post("/api/operations/diagnostics").json()
        self.assertEqual(1, len(payload["checks"]))
        self.assertEqual(0, payload["checks"][0]["exitCode"])
        self.assertEqual("ok", payload["checks"][0]["output"])

    def test_heal_resets_client_and_sessions(self) -> None:
        session_id = self._create_session()
        payload = self.client.post("/api/operations/heal").json()

        self.assertEqual("heal", payload["action"])
        self.assertEqual("completed", payload["status"])
        self.assertEqual([], self.client.get("/api/chat/sessions").json())
        self.assertTrue(self.factory.session(session_id).disposed)
        self.assertEqual(2, len(self.factory.clients))

    def test_logs_are_clamped(self) -> None:
        for i in range(5):
            self.runtime.supervisor._append_log("test", "info", f"entry {i}")

        logs = self.client.get("/api/operations/logs", params={"count": 0}).json()
        self.assertEqual(["entry 4"], [entry["message"] for entry in logs])
        self.assertEqual(5, len(self.client.get("/api/operations/logs", params={"count": 9999}).json()))


class UnexpectedErrorTests(HttpApiTestBase):
    def test_unhandled_exception_becomes_internal_error(self) -> None:
        client = TestClient(self.app, raise_server_exceptions=False)
        with patch.object(self.runtime.registry, "get_active_sessions", side_effect=RuntimeError("kaboom")):
            response = client.get("/api/chat/sessions")

        error = self.assertError(response, 500, "ERR_INTERNAL")
        self.assertEqual("kaboom", error["message"])


if __name__ == "__main__":
    unittest.main()
