import pytest
from datetime import datetime, timedelta

from app.schemas.status_schema import DeliveryStatus, PaymentStatus, TrackingEventType
from app.schemas.tracking_schemas import TrackingEventCreateSchema
from app.services.assignment_service import update_payment_status
from app.sync.status import StatusUpdater
from app.sync.views import TrackingView
from app.test.factories import AssignmentFactory, ShipmentFactory, TrackingEventFactory
from app.utils.exceptions import AuthorizationDenied


class TestTrackingService:
    @pytest.mark.asyncio
    async def test_timeline_order(self, backend, persist, assignment, sender):
        now = datetime.now()
        await persist(
            TrackingEventFactory(assignment_id=assignment.id, location="B",
                                 created_at=now + timedelta(hours=2)),
            TrackingEventFactory(assignment_id=assignment.id, location="A",
                                 created_at=now + timedelta(hours=1)),
        )

        ascending = await backend.fetch_tracking_events(assignment.id, sender)
        descending = await backend.fetch_tracking_events(assignment.id, sender, descending=True)
        latest = await backend.latest_tracking_event(assignment.id, sender)

        assert [event.location for event in ascending] == ["A", "B"]
        assert [event.location for event in descending] == ["B", "A"]
        assert latest.location == "B"

    @pytest.mark.asyncio
    async def test_only_participants_read(self, backend, assignment, outsider):
        with pytest.raises(AuthorizationDenied):
            await backend.fetch_tracking_events(assignment.id, outsider)

    @pytest.mark.asyncio
    async def test_assignments_listed_for_both_parties(self, backend, assignment, sender, traveler, outsider):
        assert [a.id for a in await backend.list_assignments(sender)] == [assignment.id]
        assert [a.id for a in await backend.list_assignments(traveler)] == [assignment.id]
        assert await backend.list_assignments(outsider) == []

    def test_coordinates_are_validated(self):
        with pytest.raises(ValueError):
            TrackingEventCreateSchema(event_type=TrackingEventType.LOCATION_UPDATE, latitude=120)


class TestTrackingView:
    """Live timeline and derived status of one assignment."""

    @pytest.mark.asyncio
    async def test_sender_sees_traveler_progress_live(self, backend, feed, assignment, sender, traveler):
        view = TrackingView(backend, sender)
        await view.open(assignment.id)
        assert view.status == DeliveryStatus.READY_FOR_PICKUP
        assert view.latest is None

        await StatusUpdater(backend, traveler).confirm_pickup(assignment, location="Paris")

        assert view.status == DeliveryStatus.IN_TRANSIT
        assert view.next_action == TrackingEventType.DELIVERY
        assert view.latest.event_type == TrackingEventType.PICKUP
        assert view.latest.location == "Paris"
        await view.close()

    @pytest.mark.asyncio
    async def test_payment_release_moves_status(self, backend, feed, persist, session_factory, sender, traveler):
        shipment = ShipmentFactory(sender_id=sender.id)
        row = AssignmentFactory(
            shipment_id=shipment.id,
            sender_id=sender.id,
            traveler_id=traveler.id,
            payment_status=PaymentStatus.ESCROWED,
        )
        await persist(shipment, row)
        view = TrackingView(backend, traveler)
        await view.open(row.id)
        assert view.status == DeliveryStatus.PENDING_PAYMENT
        assert view.next_action is None

        async with session_factory() as db:
            await update_payment_status(db, row.id, PaymentStatus.RELEASED, feed)

        assert view.status == DeliveryStatus.READY_FOR_PICKUP
        assert view.next_action == TrackingEventType.PICKUP
        await view.close()

    @pytest.mark.asyncio
    async def test_close_releases_both_subscriptions(self, backend, feed, assignment, sender):
        async with TrackingView(backend, sender) as view:
            await view.open(assignment.id)
            await view.open(assignment.id)
            assert feed.subscription_count("tracking_events") == 1
            assert feed.subscription_count("assignments") == 1

        assert feed.subscription_count() == 0
        assert view.status is None
