import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mentorhub.database import Base

# Import models so Base.metadata is populated for create_all.
import mentorhub.models  # noqa: F401
from mentorhub.models.booking import Booking
from mentorhub.models.offering import Offering
from mentorhub.schemas.booking import BookingCreate
from mentorhub.services.dependencies import ServiceContainer, build_services
from tests.unit._helpers import (
    MENTOR_ID,
    STUDENT_ID,
    FakeRoleChecker,
    FakeUserProvider,
    FakeVideoLookup,
    FrozenClock,
    RecordingNotifier,
    RecordingScheduler,
    weekly_template,
)


@pytest.fixture
def unit_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def unit_db(unit_engine) -> Session:
    """Session configured like SessionLocal, on a fresh in-memory database."""
    SessionLocal = sessionmaker(
        bind=unit_engine, autoflush=False, expire_on_commit=False, future=True
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def user() -> FakeUserProvider:
    return FakeUserProvider(MENTOR_ID)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def video() -> FakeVideoLookup:
    return FakeVideoLookup()


@pytest.fixture
def services(unit_db, clock, user, notifier, scheduler, video) -> ServiceContainer:
    return build_services(
        unit_db,
        clock=clock,
        user_provider=user,
        role_checker=FakeRoleChecker(),
        notifier=notifier,
        job_scheduler=scheduler,
        video_lookup=video,
    )


@pytest.fixture
def offering(unit_db, services, user) -> Offering:
    """A 60-minute offering for 100.00 backed by the mentor's default weekly template."""
    user.user_id = MENTOR_ID
    services.availability.save_template(weekly_template())
    offering = Offering(
        mentor_id=MENTOR_ID,
        title="Interview prep",
        duration_minutes=60,
        price_amount=10000,
        currency="TRY",
    )
    unit_db.add(offering)
    unit_db.commit()
    return offering


@pytest.fixture
def book(services, user, offering):
    """Create and pay for a booking as ``student_id``; returns the confirmed booking."""

    def _book(start_at, student_id: str = STUDENT_ID, confirm: bool = True) -> Booking:
        previous = user.user_id
        user.user_id = student_id
        try:
            booking = services.bookings.create_booking(
                BookingCreate(offering_id=offering.id, start_at=start_at)
            )
        finally:
            user.user_id = previous
        if confirm:
            booking = services.bookings.confirm_payment(booking.id)
        return booking

    return _book
