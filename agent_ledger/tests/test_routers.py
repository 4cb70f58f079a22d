import json
import tempfile
import types
import unittest
from pathlib import Path

from fastapi import BackgroundTasks, HTTPException

from agent_ledger.db.connection import open_connection
from agent_ledger.db.sqlite_migrations import run_migrations
from agent_ledger.db.sync_engine import SyncEngine
from agent_ledger.parsers.log_reader import LogReader
from agent_ledger.routers import api as api_router
from agent_ledger.routers import cache as cache_router
from agent_ledger.routers import events as events_router
from agent_ledger.services.dashboard import DashboardService
from agent_ledger.services.notifier import ChangeNotifier

_USAGE_LINE = json.dumps({
    "type": "message",
    "id": "u1",
    "timestamp": "2026-10-18T09:00:00.000Z",
    "message": {"role": "assistant", "model": "m1", "provider": "p1", "content": "hi", "usage": {"input": 3, "output": 2, "cost": 0.5}},
})


class _RouterTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "s1.jsonl").write_text(_USAGE_LINE + "\n", encoding="utf-8")
        self.db = await open_connection(":memory:")
        await run_migrations(self.db)
        self.engine = SyncEngine(self.db, LogReader([self.root]))
        await self.engine.load_state()
        self.dashboard = DashboardService(self.engine)
        self.notifier = ChangeNotifier(self.dashboard.snapshot, heartbeat_seconds=60)
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(
                    sync_engine=self.engine,
                    dashboard=self.dashboard,
                    notifier=self.notifier,
                )
            )
        )

    async def asyncTearDown(self) -> None:
        await self.notifier.close()
        await self.db.close()
        self._tmp.cleanup()


class LedgerRouterTests(_RouterTestCase):
    async def test_missing_service_is_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_costs(request)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_bad_date_is_400(self) -> None:
        for call in (
            api_router.get_tasks(self.request, date="18/10/2026"),
            api_router.get_journal(self.request, date="yesterday"),
        ):
            with self.assertRaises(HTTPException) as ctx:
                await call
            self.assertEqual(ctx.exception.status_code, 400)

    async def test_todo_create_and_delete(self) -> None:
        todo = await api_router.create_todo(self.request, api_router.TodoCreateRequest(title="  Write docs "))
        self.assertEqual(todo.title, "Write docs")

        board = await api_router.get_tasks(self.request, date=None)
        self.assertEqual([t.id for t in board.todo], [todo.id])

        result = await api_router.delete_todo(self.request, api_router.TodoDeleteRequest(id=todo.id))
        self.assertEqual(result, {"status": "ok", "id": todo.id})

        with self.assertRaises(HTTPException) as ctx:
            await api_router.delete_todo(self.request, api_router.TodoDeleteRequest(id=todo.id))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_views_after_sync(self) -> None:
        await self.engine.sync_all()

        costs = await api_router.get_costs(self.request)
        self.assertEqual(costs.byModel[0].model, "m1")
        activity = await api_router.get_activity(self.request, limit=1)
        self.assertEqual(len(activity), 1)
        agents = await api_router.get_agents(self.request)
        self.assertEqual(agents[0].model, "m1")
        journal = await api_router.get_journal(self.request, date="2026-10-18")
        self.assertEqual(journal.stats.totalTokens, 5)
        self.assertAlmostEqual(journal.stats.totalCost, 0.5)

    def test_health(self) -> None:
        payload = api_router.health()
        self.assertEqual(payload["status"], "ok")
        self.assertIn(payload["watcher"], {"running", "stopped"})


class CacheRouterTests(_RouterTestCase):
    async def test_foreground_sync_and_status(self) -> None:
        result = await cache_router.trigger_sync(self.request, BackgroundTasks(), cache_router.SyncRequest())
        self.assertEqual(result["mode"], "foreground")
        self.assertEqual(result["stats"]["events"], 1)

        status = await cache_router.get_cache_status(self.request)
        self.assertEqual(status["sources"], 1)
        self.assertEqual(status["checkpoints"][0]["lineCount"], 1)

    async def test_background_sync_is_scheduled(self) -> None:
        background = BackgroundTasks()
        result = await cache_router.trigger_sync(self.request, background, cache_router.SyncRequest(background=True))
        self.assertEqual(result["mode"], "background")
        self.assertEqual(len(background.tasks), 1)

    async def test_rebuild(self) -> None:
        await self.engine.sync_all()
        result = await cache_router.trigger_rebuild(self.request, BackgroundTasks(), None)
        self.assertTrue(result["stats"]["full"])
        self.assertEqual(len(self.engine.ledgers.costs.summary().byModel), 1)

    async def test_missing_engine_is_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))
        with self.assertRaises(HTTPException) as ctx:
            await cache_router.get_cache_status(request)
        self.assertEqual(ctx.exception.status_code, 503)


class EventsRouterTests(_RouterTestCase):
    async def test_stream_response(self) -> None:
        response = await events_router.stream_events(self.request, last_event_id="5")

        self.assertEqual(response.media_type, "text/event-stream")
        self.assertEqual(response.headers["cache-control"], "no-cache")
        self.assertEqual(response.headers["x-accel-buffering"], "no")
        self.assertEqual(self.notifier.subscribers, {})

        body = response.body_iterator
        first = await body.__anext__()
        self.assertEqual(first, "retry: 3000\n\n")
        self.assertEqual(len(self.notifier.subscribers), 1)
        await body.aclose()
        self.assertEqual(self.notifier.subscribers, {})


if __name__ == "__main__":
    unittest.main()
