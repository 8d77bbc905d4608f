from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from database import make_engine, create_db_and_tables, get_session, seed_sample_data
from main import app
from models import ParkingBookingCreate, utcnow
from park_ride_operations import ParkRideSystem
from storage import ParkRideStorage


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", echo=False)
    create_db_and_tables(engine)
    with Session(engine) as session:
        seed_sample_data(session)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def storage(session):
    return ParkRideStorage(session)


@pytest.fixture
def system():
    return ParkRideSystem(demo_user_id=1)


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_booking(storage):
    def factory(station_id=1, user_id=1, starts_in=timedelta(hours=-1), lasts=timedelta(hours=2), **extra):
        start = utcnow() + starts_in
        data = {
            "user_id": user_id,
            "station_id": station_id,
            "vehicle_plate": "KA01AB1234",
            "vehicle_type": "car",
            "start_time": start,
            "end_time": start + lasts,
            "total_cost": 50.0,
            "status": "confirmed",
        }
        data.update(extra)
        return storage.create_booking(ParkingBookingCreate(**data))
    return factory
