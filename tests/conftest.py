import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('LINK_TOKEN_SECRET', 'test-link-token-secret-0123456789abcdef')
os.environ.setdefault('PUBLIC_APP_URL', 'https://clinic.example.com')

from clinicbook.database import Base  # noqa: E402
from clinicbook.models import blocked_interval, booking, schedule  # noqa: E402,F401
from clinicbook.scheduling.store import SqlAlchemyScheduleStore  # noqa: E402
from support import PROVIDER_ID  # noqa: E402


@pytest.fixture
def schedule_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(schedule_db) -> SqlAlchemyScheduleStore:
    return SqlAlchemyScheduleStore(schedule_db)


@pytest.fixture
def monday_schedule(store):
    return store.add_weekly_availability(
        provider_id=PROVIDER_ID,
        day_of_week=1,
        start_time=time(8, 0),
        end_time=time(12, 0),
        slot_duration_minutes=30,
    )
