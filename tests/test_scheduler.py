import asyncio
import unittest
from datetime import timedelta

from blockdraw.models import Drawing, DrawItem, ItemState
from blockdraw.models.utils import utcnow
from blockdraw.scheduler import DeadlineScheduler, timer_key


class TestDeadlineScheduler(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fired: list[tuple[str, str]] = []
        self.scheduler = DeadlineScheduler(self._on_expire)

    async def asyncTearDown(self):
        self.scheduler.cancel_all()

    async def _on_expire(self, drawing_id: str, item_key: str) -> None:
        self.fired.append((drawing_id, item_key))

    def test_timer_key(self):
        self.assertEqual(timer_key("draw-1", "item-2"), "draw-1:item-2")

    async def test_fires_once_and_unregisters(self):
        delay = self.scheduler.arm("d", "i", utcnow() + timedelta(milliseconds=30))
        self.assertGreater(delay, 0)
        self.assertTrue(self.scheduler.is_armed("d", "i"))
        await asyncio.sleep(0.15)
        self.assertEqual(self.fired, [("d", "i")])
        self.assertFalse(self.scheduler.is_armed("d", "i"))
        self.assertEqual(len(self.scheduler), 0)

    async def test_past_deadline_fires_immediately(self):
        delay = self.scheduler.arm("d", "i", utcnow() - timedelta(hours=1))
        self.assertEqual(delay, 0.0)
        await asyncio.sleep(0.02)
        self.assertEqual(self.fired, [("d", "i")])

    async def test_rearm_replaces_existing_timer(self):
        self.scheduler.arm("d", "i", utcnow() + timedelta(hours=1))
        self.scheduler.arm("d", "i", utcnow() + timedelta(milliseconds=20))
        self.assertEqual(len(self.scheduler), 1)
        await asyncio.sleep(0.1)
        self.assertEqual(self.fired, [("d", "i")])

    async def test_cancel(self):
        self.scheduler.arm("d", "i", utcnow() + timedelta(milliseconds=20))
        self.assertTrue(self.scheduler.cancel("d", "i"))
        self.assertFalse(self.scheduler.cancel("d", "i"))
        await asyncio.sleep(0.08)
        self.assertEqual(self.fired, [])

    async def test_cancel_drawing(self):
        drawing = Drawing(
            scope_id="s",
            items=[
                DrawItem(prize="A", duration_minutes=10),
                DrawItem(prize="B", duration_minutes=10),
            ],
            id="draw-x",
        )
        for item in drawing.items:
            self.scheduler.arm(drawing.id, item.item_key, item.ends_at)
        self.scheduler.arm("other", "item-1", utcnow() + timedelta(minutes=10))
        self.assertEqual(self.scheduler.cancel_drawing(drawing), 2)
        self.assertEqual(len(self.scheduler), 1)

    async def test_restore_arms_open_items_only(self):
        past = DrawItem(prize="Past", ends_at=utcnow() - timedelta(minutes=1))
        future = DrawItem(prize="Future", duration_minutes=30)
        closed = DrawItem(prize="Closed", ends_at=utcnow() - timedelta(minutes=1))
        closed.state = ItemState.AWAITING_SEED.value
        drawing = Drawing(scope_id="s", items=[past, future, closed], id="draw-r")

        self.assertEqual(self.scheduler.restore([drawing]), 2)
        await asyncio.sleep(0.02)
        self.assertEqual(self.fired, [("draw-r", "item-1")])
        self.assertTrue(self.scheduler.is_armed("draw-r", "item-2"))
        self.assertFalse(self.scheduler.is_armed("draw-r", "item-3"))

    async def test_handler_errors_are_contained(self):
        async def _boom(drawing_id, item_key):
            raise RuntimeError("boom")

        scheduler = DeadlineScheduler(_boom)
        with self.assertLogs("blockdraw.scheduler", level="ERROR"):
            scheduler.arm("d", "i", utcnow())
            await asyncio.sleep(0.02)
        self.assertEqual(len(scheduler), 0)


if __name__ == "__main__":
    unittest.main()
