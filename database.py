# database.py
import logging
import os
from datetime import timedelta

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session, select

from models import (
    User, ParkingStation, ParkingSpot, SystemAlert, PublicTransportSchedule,
    RidePreference, SpotType, AlertType, AlertSeverity, TransportType, RideType, utcnow,
)

logger = logging.getLogger(__name__)

# in-memory by default, the store lives as long as the process
database_url = os.getenv("PARK_RIDE_DATABASE_URL", "sqlite://")
sql_echo = os.getenv("PARK_RIDE_SQL_ECHO", "0").lower() in ("1", "true", "yes")
seed_enabled = os.getenv("PARK_RIDE_SEED_DATA", "1").lower() in ("1", "true", "yes")


def make_engine(url: str = database_url, echo: bool = sql_echo):
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty database.
            # Requests on the threadpool share its transaction state, so a rollback
            # in one request can drop rows another request has flushed but not committed.
            options["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **options)
    return create_engine(url, echo=echo)


engine = make_engine()


def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session


def seed_sample_data(session: Session) -> bool:
    """Load the demo data set into an empty store.

    Returns False when stations already exist, so restarting against a
    persistent database never duplicates the sample records.
    """
    if session.exec(select(ParkingStation)).first() is not None:
        return False

    from werkzeug.security import generate_password_hash

    now = utcnow()
    session.add(User(
        id=1,
        username="john_doe",
        email="john@example.com",
        password_hash=generate_password_hash("password123"),
        first_name="John",
        last_name="Doe",
        phone="+91 9876543210",
        reward_points=1250,
        membership_level="silver",
    ))

    stations = [
        ParkingStation(
            id=1,
            name="Metro Central Station",
            address="MG Road, Central Metro Station, Bengaluru",
            latitude=12.9716,
            longitude=77.5946,
            total_spots=456,
            available_spots=154,
            hourly_rate=25.0,
            amenities=["covered", "ev_charging", "security", "24_hour"],
        ),
        ParkingStation(
            id=2,
            name="East Plaza Hub",
            address="Whitefield Main Road, East Metro Station, Bengaluru",
            latitude=12.9698,
            longitude=77.7499,
            total_spots=342,
            available_spots=38,
            hourly_rate=35.0,
            amenities=["covered", "bike_parking", "security"],
        ),
        ParkingStation(
            id=3,
            name="West Junction Terminal",
            address="Rajajinagar Metro Station, West Bengaluru",
            latitude=12.9915,
            longitude=77.5556,
            total_spots=678,
            available_spots=234,
            hourly_rate=20.0,
            amenities=["multi_level", "covered", "ev_charging", "security"],
        ),
    ]
    session.add_all(stations)
    session.flush()

    spots = [
        (1, "A-01", "Ground", "A", SpotType.standard),
        (1, "A-02", "Ground", "A", SpotType.ev_charging),
        (1, "B-24", "Level 2", "B", SpotType.standard),
        (1, "B-25", "Level 2", "B", SpotType.standard),
        (2, "A-12", "Ground", "A", SpotType.compact),
        (2, "B-15", "Level 1", "B", SpotType.standard),
        (3, "G-10", "Ground", "G", SpotType.disabled),
        (3, "H-05", "Level 1", "H", SpotType.ev_charging),
    ]
    for station_id, number, level, section, spot_type in spots:
        session.add(ParkingSpot(
            station_id=station_id,
            spot_number=number,
            level=level,
            section=section,
            spot_type=spot_type,
        ))

    alerts = [
        (AlertType.sensor_malfunction, AlertSeverity.high, "Sensor malfunction",
         "East Plaza Hub - Zone E, Spots 45-52", 2, 2),
        (AlertType.high_demand, AlertSeverity.medium, "High demand detected",
         "Metro Central - Dynamic pricing activated", 1, 15),
        (AlertType.maintenance, AlertSeverity.low, "Maintenance scheduled",
         "West Junction - Zone H, Tomorrow 2AM", 3, 60),
    ]
    for alert_type, severity, title, description, station_id, minutes_ago in alerts:
        session.add(SystemAlert(
            type=alert_type,
            severity=severity,
            title=title,
            description=description,
            station_id=station_id,
            created_at=now - timedelta(minutes=minutes_ago),
        ))

    session.add(PublicTransportSchedule(
        transport_type=TransportType.metro,
        route_name="Blue Line",
        route_number="BL-01",
        from_station="Central Metro Station",
        to_station="East Plaza Hub",
        departure_time="06:00",
        arrival_time="06:25",
        frequency=5,
        operating_days=["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"],
        fare=35.0,
    ))
    session.add(PublicTransportSchedule(
        transport_type=TransportType.bus,
        route_name="City Connect",
        route_number="CC-42",
        from_station="Metro Central Station",
        to_station="Tech Park Phase 1",
        departure_time="06:15",
        arrival_time="06:45",
        frequency=15,
        operating_days=["monday", "tuesday", "wednesday", "thursday", "friday"],
        fare=25.0,
    ))

    session.add(RidePreference(
        user_id=1,
        preferred_ride_type=RideType.shared,
        max_wait_time=8,
        pooling_preference=True,
        ac_preference=True,
        music_preference=False,
        preferred_payment_method="wallet",
        frequent_destinations=["Tech Park Phase 1", "Mall of Bangalore", "Airport"],
        commute_pattern={
            "morning_destination": "Tech Park Phase 1",
            "evening_destination": "Metro Central Station",
            "preferred_time": "09:00",
            "average_rides": 12,
        },
    ))

    session.commit()
    logger.info("Seeded sample data: %d stations, %d spots, %d alerts", len(stations), len(spots), len(alerts))
    return True
