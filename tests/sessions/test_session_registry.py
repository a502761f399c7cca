import asyncio
import unittest
from unittest.mock import patch

from assistant_gateway.assistant.events import (
    AssistantMessage,
    AssistantMessageDelta,
    SessionError,
    SessionIdle,
    SessionModelChange,
)
from assistant_gateway.errors import ClientFaultError, InvalidArgumentError, SessionNotFoundError
from assistant_gateway.sessions import ClientLifecycleManager, SessionRegistry, SessionStatus
from assistant_gateway.sessions.models import SessionState
from tests.fakes import FakeClientFactory


def _make_registry(factory: FakeClientFactory | None = None, **kwargs) -> tuple[SessionRegistry, FakeClientFactory]:
    factory = factory or FakeClientFactory()
    lifecycle = ClientLifecycleManager(factory, base_directory=".")
    return SessionRegistry(lifecycle, **kwargs), factory


class CreateSessionTests(unittest.TestCase):
    def test_new_session_is_idle_with_matching_timestamps(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            session_id = await registry.create_session("model-a", "web")
            return registry.get_session_status(session_id), factory

        status, factory = asyncio.run(scenario())

        self.assertEqual(SessionStatus.IDLE, status.status)
        self.assertEqual(status.created_at, status.last_updated_at)
        self.assertEqual("model-a", status.model)
        self.assertEqual("web", status.channel)
        self.assertIsNone(status.last_prompt)
        self.assertEqual(1, len(factory.clients))
        self.assertTrue(factory.current.started)

    def test_client_is_started_lazily_once(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            await registry.create_session("m")
            await registry.create_session("m")
            return factory

        factory = asyncio.run(scenario())
        self.assertEqual(1, len(factory.clients))

    def test_client_start_failure_propagates(self) -> None:
        factory = FakeClientFactory()
        factory.start_error = RuntimeError("cli missing")

        async def scenario():
            registry, _ = _make_registry(factory)
            await registry.create_session("m")

        with self.assertRaises(RuntimeError):
            asyncio.run(scenario())


class SendMessageTests(unittest.TestCase):
    def test_success_returns_assistant_messages_and_ends_idle(self) -> None:
        def responder(sid, prompt):
            return [
                AssistantMessageDelta(sid, "par"),
                AssistantMessage(sid, "first"),
                AssistantMessage(sid, "second"),
                SessionIdle(sid),
            ]

        async def scenario():
            registry, factory = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("m")
            messages = await registry.send_message(sid, "hello")
            return messages, registry.get_session_status(sid), factory.session(sid)

        messages, status, session = asyncio.run(scenario())

        self.assertEqual(["first", "second"], [m.content for m in messages])
        self.assertTrue(all(m.role == "assistant" for m in messages))
        self.assertEqual(SessionStatus.IDLE, status.status)
        self.assertEqual("hello", status.last_prompt)
        self.assertEqual("second", status.last_response)
        self.assertEqual("second", status.last_response_preview)
        self.assertIsNone(status.last_error)
        self.assertGreaterEqual(status.last_updated_at, status.created_at)
        self.assertEqual([], session.handlers)

    def test_error_event_fails_the_call_and_records_error(self) -> None:
        def responder(sid, prompt):
            return [SessionError(sid, "model overloaded")]

        async def scenario():
            registry, factory = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("m")
            try:
                await registry.send_message(sid, "hello")
            except ClientFaultError as ex:
                return ex, registry.get_session_status(sid), factory.session(sid)
            return None, None, None

        error, status, session = asyncio.run(scenario())

        self.assertIsNotNone(error)
        self.assertEqual("model overloaded", error.message)
        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertEqual("model overloaded", status.last_error)
        self.assertEqual([], session.handlers)

    def test_dispatch_failure_marks_error_and_propagates(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            factory.session(sid).send_error = ConnectionError("pipe closed")
            with self.assertRaises(ConnectionError):
                await registry.send_message(sid, "hello")
            return registry.get_session_status(sid), factory.session(sid)

        status, session = asyncio.run(scenario())

        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertEqual("pipe closed", status.last_error)
        self.assertEqual([], session.handlers)

    def test_dispatch_timeout_propagates_unchanged_without_send_timeout(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            factory.session(sid).send_error = TimeoutError("cli pipe timed out")
            with self.assertRaises(TimeoutError) as ctx:
                await registry.send_message(sid, "hello")
            return registry.get_session_status(sid), ctx.exception

        status, error = asyncio.run(scenario())

        self.assertNotIsInstance(error, ClientFaultError)
        self.assertEqual("cli pipe timed out", str(error))
        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertEqual("cli pipe timed out", status.last_error)

    def test_handler_exception_becomes_failed_completion(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            sid = await registry.create_session("m")
            with patch.object(SessionState, "record_response", side_effect=ValueError("bad payload")):
                with self.assertRaises(ClientFaultError):
                    await registry.send_message(sid, "hello")
            return registry.get_session_status(sid)

        status = asyncio.run(scenario())

        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertEqual("bad payload", status.last_error)

    def test_sequential_sends_never_leave_session_running(self) -> None:
        def responder(sid, prompt):
            if prompt == "fail":
                return [SessionError(sid, "nope")]
            return [AssistantMessage(sid, prompt.upper()), SessionIdle(sid)]

        async def scenario():
            registry, _ = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("m")
            seen = []
            for prompt in ["a", "fail", "b", "fail"]:
                try:
                    await registry.send_message(sid, prompt)
                except ClientFaultError:
                    pass
                seen.append(registry.get_session_status(sid).status)
            return seen

        seen = asyncio.run(scenario())
        self.assertEqual(
            [SessionStatus.IDLE, SessionStatus.ERROR, SessionStatus.IDLE, SessionStatus.ERROR],
            seen,
        )

    def test_next_send_clears_previous_error(self) -> None:
        def responder(sid, prompt):
            if prompt == "fail":
                return [SessionError(sid, "nope")]
            return [AssistantMessage(sid, "fine"), SessionIdle(sid)]

        async def scenario():
            registry, _ = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("m")
            with self.assertRaises(ClientFaultError):
                await registry.send_message(sid, "fail")
            await registry.send_message(sid, "again")
            return registry.get_session_status(sid)

        status = asyncio.run(scenario())
        self.assertEqual(SessionStatus.IDLE, status.status)
        self.assertIsNone(status.last_error)

    def test_unknown_session_raises_not_found(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            await registry.send_message("missing", "hello")

        with self.assertRaises(SessionNotFoundError):
            asyncio.run(scenario())

    def test_model_change_event_updates_model(self) -> None:
        def responder(sid, prompt):
            return [SessionModelChange(sid, "model-b"), AssistantMessage(sid, "ok"), SessionIdle(sid)]

        async def scenario():
            registry, _ = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("model-a")
            await registry.send_message(sid, "hi")
            return registry.get_session_status(sid)

        self.assertEqual("model-b", asyncio.run(scenario()).model)

    def test_events_after_completion_are_ignored(self) -> None:
        def responder(sid, prompt):
            return [AssistantMessage(sid, "ok"), SessionIdle(sid), SessionError(sid, "late")]

        async def scenario():
            registry, _ = _make_registry(FakeClientFactory(responder))
            sid = await registry.create_session("m")
            messages = await registry.send_message(sid, "hi")
            return messages, registry.get_session_status(sid)

        messages, status = asyncio.run(scenario())
        self.assertEqual(["ok"], [m.content for m in messages])
        self.assertEqual(SessionStatus.IDLE, status.status)

    def test_attachments_are_forwarded(self) -> None:
        from assistant_gateway.assistant.client import FileAttachment

        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            attachment = FileAttachment(path="/tmp/x.png", display_name="x.png")
            await registry.send_message(sid, "look", [attachment])
            return factory.session(sid).attachments

        attachments = asyncio.run(scenario())
        self.assertEqual("x.png", attachments[0][0].display_name)


class SendConcurrencyTests(unittest.TestCase):
    def test_status_read_while_running_is_consistent(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            created = registry.get_session_status(sid)
            session = factory.session(sid)
            session.hold = asyncio.Event()

            task = asyncio.create_task(registry.send_message(sid, "slow"))
            await asyncio.sleep(0.01)
            running = registry.get_session_status(sid)
            session.hold.set()
            await task
            done = registry.get_session_status(sid)
            return created, running, done

        created, running, done = asyncio.run(scenario())

        self.assertEqual(SessionStatus.RUNNING, running.status)
        self.assertEqual("slow", running.last_prompt)
        self.assertGreaterEqual(running.last_updated_at, created.last_updated_at)
        self.assertEqual(SessionStatus.IDLE, done.status)
        # Snapshots are copies, not live views.
        self.assertEqual(SessionStatus.RUNNING, running.status)

    def test_concurrent_sends_on_one_session_are_serialized(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            session = factory.session(sid)
            session.hold = asyncio.Event()

            first = asyncio.create_task(registry.send_message(sid, "one"))
            second = asyncio.create_task(registry.send_message(sid, "two"))
            await asyncio.sleep(0.01)
            dispatched_while_held = list(session.prompts)
            session.hold.set()
            results = await asyncio.gather(first, second)
            return dispatched_while_held, results

        dispatched, results = asyncio.run(scenario())

        self.assertEqual(["one"], dispatched)
        self.assertEqual(["echo: one"], [m.content for m in results[0]])
        self.assertEqual(["echo: two"], [m.content for m in results[1]])

    def test_cancelled_send_disposes_subscription_and_ends_in_error(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            session = factory.session(sid)
            session.hold = asyncio.Event()

            task = asyncio.create_task(registry.send_message(sid, "never"))
            await asyncio.sleep(0.01)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task
            return registry.get_session_status(sid), session

        status, session = asyncio.run(scenario())

        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertEqual([], session.handlers)

    def test_send_timeout_marks_error(self) -> None:
        async def scenario():
            registry, factory = _make_registry(send_timeout_seconds=0.05)
            sid = await registry.create_session("m")
            factory.session(sid).hold = asyncio.Event()
            with self.assertRaises(ClientFaultError):
                await registry.send_message(sid, "slow")
            return registry.get_session_status(sid), factory.session(sid)

        status, session = asyncio.run(scenario())

        self.assertEqual(SessionStatus.ERROR, status.status)
        self.assertIn("No completion", status.last_error)
        self.assertEqual([], session.handlers)


class UpdateModelTests(unittest.TestCase):
    def test_sends_directive_and_updates_model(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("model-a")
            await registry.update_session_model(sid, "model-b")
            return registry.get_session_status(sid), factory.session(sid)

        status, session = asyncio.run(scenario())

        self.assertEqual(["/model model-b"], session.prompts)
        self.assertEqual("model-b", status.model)

    def test_blank_model_is_invalid(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            sid = await registry.create_session("m")
            await registry.update_session_model(sid, "  ")

        with self.assertRaises(InvalidArgumentError):
            asyncio.run(scenario())

    def test_unknown_session_is_not_found(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            await registry.update_session_model("missing", "m")

        with self.assertRaises(SessionNotFoundError):
            asyncio.run(scenario())


class QueryAndDeleteTests(unittest.TestCase):
    def test_statuses_are_newest_first_and_filter_by_channel(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            web = await registry.create_session("m", "web")
            tg = await registry.create_session("m", "telegram")
            await asyncio.sleep(0.002)
            await registry.send_message(web, "bump")
            return registry, web, tg

        registry, web, tg = asyncio.run(scenario())

        self.assertEqual([web, tg], [s.session_id for s in registry.get_session_statuses()])
        self.assertEqual([tg], [s.session_id for s in registry.get_session_statuses("Telegram")])
        self.assertEqual([], registry.get_session_statuses("slack"))
        self.assertIsNone(registry.get_session_status("missing"))

    def test_delete_unknown_session_is_noop(self) -> None:
        async def scenario():
            registry, _ = _make_registry()
            await registry.create_session("m")
            before = len(registry.get_active_sessions())
            await registry.delete_session("missing")
            return before, len(registry.get_active_sessions())

        before, after = asyncio.run(scenario())
        self.assertEqual(before, after)

    def test_delete_disposes_handle_and_removes_record(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            await registry.delete_session(sid)
            await registry.delete_session(sid)
            return registry, factory.session(sid), sid

        registry, session, sid = asyncio.run(scenario())

        self.assertTrue(session.disposed)
        self.assertIsNone(registry.get_session_status(sid))
        self.assertEqual([], registry.get_active_sessions())

    def test_delete_fails_outstanding_send(self) -> None:
        async def scenario():
            registry, factory = _make_registry()
            sid = await registry.create_session("m")
            factory.session(sid).hold = asyncio.Event()
            task = asyncio.create_task(registry.send_message(sid, "slow"))
            await asyncio.sleep(0.01)
            await registry.delete_session(sid)
            with self.assertRaises(ClientFaultError):
                await task

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
