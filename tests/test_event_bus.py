import unittest
from datetime import datetime, timezone

from cotacoes import create_app
from cotacoes.application.quote_service import QuoteService
from cotacoes.config import Config
from cotacoes.core import DomainEvent, EventBus, QuoteItemsChanged, QuoteStatusChanged
from cotacoes.db import close_db, get_db
from cotacoes.domain.contracts import Actor, QuoteCreateInput, QuoteItemInput
from tests.helpers.temp_db import TempDbSandbox


class EventBusTest(unittest.TestCase):
    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        def first_handler(_event):
            execution_trace.append("first")

        def second_handler(_event):
            execution_trace.append("second")

        bus.subscribe(QuoteStatusChanged, first_handler)
        bus.subscribe(QuoteStatusChanged, second_handler)
        bus.subscribe(QuoteStatusChanged, first_handler)
        bus.publish(QuoteStatusChanged(tenant_id="tenant-a", quote_id=1, from_status="draft", to_status="sent"))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_failing_handler_does_not_block_the_others(self) -> None:
        bus = EventBus()
        received = []

        def broken_handler(_event):
            raise RuntimeError("boom")

        bus.subscribe(QuoteStatusChanged, broken_handler)
        bus.subscribe(QuoteStatusChanged, received.append)
        bus.publish(QuoteStatusChanged(tenant_id="tenant-a", quote_id=1, from_status=None, to_status="draft"))

        self.assertEqual(len(received), 1)

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(QuoteItemsChanged, received.append)
        bus.publish(QuoteStatusChanged(tenant_id="tenant-a", quote_id=1, from_status=None, to_status="draft"))
        self.assertEqual(received, [])

    def test_domain_event_normalizes_metadata(self) -> None:
        naive = datetime(2026, 1, 1, 10, 0)
        event = DomainEvent(event_id="  ", occurred_at=naive, tenant_id="  ")
        self.assertTrue(event.event_id)
        self.assertEqual(event.tenant_id, "unknown")
        self.assertEqual(event.occurred_at.tzinfo, timezone.utc)


class QuoteServiceEventsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="event_bus")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True, AUTH_ENABLED=False))

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_create_quote_publishes_items_changed(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(QuoteItemsChanged, received.append)
        service = QuoteService(event_bus=bus)

        with self.app.app_context():
            db = get_db()
            result = service.create_quote(
                db,
                tenant_id="tenant-a",
                actor=Actor(email="gestor@demo.com", role="manager"),
                create_input=QuoteCreateInput(
                    title="Troca de lampadas",
                    description=None,
                    deadline=None,
                    budget=None,
                    items=[QuoteItemInput(description="Lampada LED", quantity=20)],
                ),
            )
            db.commit()

        self.assertEqual(result.status_code, 201)
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].tenant_id, "tenant-a")
        self.assertEqual(received[0].quote_id, result.payload["id"])
        self.assertEqual(received[0].actor, "gestor@demo.com")


if __name__ == "__main__":
    unittest.main()
