# storage.py
import logging
from datetime import datetime, timedelta
from math import radians, sin, cos, sqrt, atan2
from typing import List, Optional

from sqlmodel import Session, select
from werkzeug.security import generate_password_hash

from models import (
    User, UserCreate, UserUpdate,
    ParkingStation, ParkingStationCreate, ParkingStationUpdate,
    ParkingSpot, ParkingSpotUpdate,
    ParkingBooking, ParkingBookingCreate, ParkingBookingUpdate,
    RideBooking, RideBookingCreate, RideBookingUpdate, RideStatus,
    PublicTransportSchedule, PublicTransportScheduleCreate, PublicTransportScheduleUpdate,
    RidePreference, RidePreferenceBase, RidePreferenceUpdate,
    SystemAlert, SystemAlertCreate, SystemAlertUpdate,
    utcnow,
)

logger = logging.getLogger(__name__)

POOLING_WINDOW = timedelta(minutes=30)

ACTIVE_RIDE_STATUSES = (
    RideStatus.pending,
    RideStatus.confirmed,
    RideStatus.driver_assigned,
    RideStatus.in_progress,
)


def haversine(lat1, lon1, lat2, lon2):
    R = 6371.0
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def qr_code_for(booking_id: int) -> str:
    return f"PKG{booking_id:09d}"


def _merge(record, updates):
    for key, value in updates.model_dump(exclude_unset=True).items():
        setattr(record, key, value)
    return record


class ParkRideStorage:
    """Data access for every park-and-ride entity, bound to one session."""

    def __init__(self, session: Session):
        self.session = session

    def save(self, record):
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.username == username)).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()

    def create_user(self, data: UserCreate) -> User:
        user = User.model_validate(
            data.model_dump(exclude={"password"}),
            update={"password_hash": generate_password_hash(data.password)},
        )
        user = self.save(user)
        logger.info("Created user %s (%s)", user.id, user.username)
        return user

    def update_user(self, user_id: int, updates: UserUpdate) -> Optional[User]:
        user = self.get_user(user_id)
        if not user:
            return None
        user = self.save(_merge(user, updates))
        logger.info("Updated user %s", user_id)
        return user

    # Station directory

    def list_stations(self) -> List[ParkingStation]:
        return list(self.session.exec(
            select(ParkingStation).where(ParkingStation.is_active == True).order_by(ParkingStation.id)  # noqa: E712
        ).all())

    def get_station(self, station_id: int) -> Optional[ParkingStation]:
        return self.session.get(ParkingStation, station_id)

    def search_stations(self, query: Optional[str] = None, lat: Optional[float] = None,
                        lng: Optional[float] = None) -> List[ParkingStation]:
        stations = self.list_stations()

        if query:
            needle = query.lower()
            stations = [
                s for s in stations
                if needle in s.name.lower() or needle in s.address.lower()
            ]

        if lat is not None and lng is not None:
            stations.sort(key=lambda s: haversine(lat, lng, s.latitude, s.longitude))

        return stations

    def create_station(self, data: ParkingStationCreate) -> ParkingStation:
        station = self.save(ParkingStation.model_validate(data))
        logger.info("Created parking station %s (%s)", station.id, station.name)
        return station

    def update_station(self, station_id: int, updates: ParkingStationUpdate) -> Optional[ParkingStation]:
        station = self.get_station(station_id)
        if not station:
            return None
        station = self.save(_merge(station, updates))
        logger.info("Updated parking station %s", station_id)
        return station

    # Spot registry

    def list_spots(self, station_id: int) -> List[ParkingSpot]:
        return list(self.session.exec(
            select(ParkingSpot).where(ParkingSpot.station_id == station_id).order_by(ParkingSpot.id)
        ).all())

    def get_spot(self, spot_id: int) -> Optional[ParkingSpot]:
        return self.session.get(ParkingSpot, spot_id)

    def update_spot(self, spot_id: int, updates: ParkingSpotUpdate) -> Optional[ParkingSpot]:
        spot = self.get_spot(spot_id)
        if not spot:
            return None
        _merge(spot, updates)
        spot.last_updated = utcnow()
        spot = self.save(spot)
        logger.info("Updated parking spot %s", spot_id)
        return spot

    # Booking ledger

    def list_bookings_by_user(self, user_id: int) -> List[ParkingBooking]:
        return list(self.session.exec(
            select(ParkingBooking)
            .where(ParkingBooking.user_id == user_id)
            .order_by(ParkingBooking.created_at.desc(), ParkingBooking.id.desc())
        ).all())

    def get_booking(self, booking_id: int) -> Optional[ParkingBooking]:
        return self.session.get(ParkingBooking, booking_id)

    def create_booking(self, data: ParkingBookingCreate) -> ParkingBooking:
        booking = ParkingBooking.model_validate(data)
        self.session.add(booking)
        self.session.flush()  # assigns the id the QR code is built from
        booking.qr_code = qr_code_for(booking.id)

        station = self.session.get(ParkingStation, booking.station_id)
        if station and station.available_spots > 0:
            station.available_spots -= 1
            self.session.add(station)

        self.session.commit()
        self.session.refresh(booking)
        logger.info("Created parking booking %s (%s) at station %s",
                    booking.id, booking.qr_code, booking.station_id)
        return booking

    def update_booking(self, booking_id: int, updates: ParkingBookingUpdate) -> Optional[ParkingBooking]:
        booking = self.get_booking(booking_id)
        if not booking:
            return None
        booking = self.save(_merge(booking, updates))
        logger.info("Updated parking booking %s", booking_id)
        return booking

    def release_capacity(self, booking: ParkingBooking):
        """Give the booking's station and spot back, without committing."""
        station = self.session.get(ParkingStation, booking.station_id)
        if station and station.available_spots < station.total_spots:
            station.available_spots += 1
            self.session.add(station)
        if booking.spot_id is not None:
            spot = self.session.get(ParkingSpot, booking.spot_id)
            if spot:
                spot.is_reserved = False
                spot.is_occupied = False
                spot.last_updated = utcnow()
                self.session.add(spot)

    # Ride ledger

    def list_rides_by_user(self, user_id: int) -> List[RideBooking]:
        return list(self.session.exec(
            select(RideBooking)
            .where(RideBooking.user_id == user_id)
            .order_by(RideBooking.created_at.desc(), RideBooking.id.desc())
        ).all())

    def list_active_rides(self, user_id: int) -> List[RideBooking]:
        return list(self.session.exec(
            select(RideBooking)
            .where(RideBooking.user_id == user_id, RideBooking.status.in_(ACTIVE_RIDE_STATUSES))
            .order_by(RideBooking.created_at.desc(), RideBooking.id.desc())
        ).all())

    def get_ride(self, ride_id: int) -> Optional[RideBooking]:
        return self.session.get(RideBooking, ride_id)

    def create_ride(self, data: RideBookingCreate) -> RideBooking:
        ride = self.save(RideBooking.model_validate(data))
        logger.info("Created ride booking %s (%s -> %s)", ride.id, ride.pickup_location, ride.destination)
        return ride

    def update_ride(self, ride_id: int, updates: RideBookingUpdate) -> Optional[RideBooking]:
        ride = self.get_ride(ride_id)
        if not ride:
            return None
        ride = self.save(_merge(ride, updates))
        logger.info("Updated ride booking %s", ride_id)
        return ride

    def find_pooling_rides(self, pickup_location: str, destination: str,
                           scheduled_time: datetime) -> List[RideBooking]:
        candidates = self.session.exec(
            select(RideBooking).where(
                RideBooking.pooling_enabled == True,  # noqa: E712
                RideBooking.status == RideStatus.pending,
            ).order_by(RideBooking.id)
        ).all()

        pickup = pickup_location.lower()
        dest = destination.lower()
        return [
            ride for ride in candidates
            if pickup in ride.pickup_location.lower()
            and dest in ride.destination.lower()
            and ride.scheduled_time is not None
            and abs(ride.scheduled_time - scheduled_time) < POOLING_WINDOW
        ]

    # Public transport schedules

    def list_schedules(self, from_station: Optional[str] = None,
                       to_station: Optional[str] = None) -> List[PublicTransportSchedule]:
        schedules = self.session.exec(
            select(PublicTransportSchedule)
            .where(PublicTransportSchedule.is_active == True)  # noqa: E712
            .order_by(PublicTransportSchedule.id)
        ).all()
        if from_station:
            schedules = [s for s in schedules if from_station.lower() in s.from_station.lower()]
        if to_station:
            schedules = [s for s in schedules if to_station.lower() in s.to_station.lower()]
        return list(schedules)

    def create_schedule(self, data: PublicTransportScheduleCreate) -> PublicTransportSchedule:
        schedule = self.save(PublicTransportSchedule.model_validate(data))
        logger.info("Created transport schedule %s (%s)", schedule.id, schedule.route_name)
        return schedule

    def update_schedule(self, schedule_id: int,
                        updates: PublicTransportScheduleUpdate) -> Optional[PublicTransportSchedule]:
        schedule = self.session.get(PublicTransportSchedule, schedule_id)
        if not schedule:
            return None
        _merge(schedule, updates)
        schedule.last_updated = utcnow()
        schedule = self.save(schedule)
        logger.info("Updated transport schedule %s", schedule_id)
        return schedule

    # Ride preferences

    def get_preference(self, user_id: int) -> Optional[RidePreference]:
        return self.session.exec(
            select(RidePreference).where(RidePreference.user_id == user_id)
        ).first()

    def create_preference(self, user_id: int, data: RidePreferenceBase) -> RidePreference:
        preference = self.save(RidePreference.model_validate(data, update={"user_id": user_id}))
        logger.info("Created ride preference %s for user %s", preference.id, user_id)
        return preference

    def update_preference(self, user_id: int, updates: RidePreferenceUpdate) -> Optional[RidePreference]:
        preference = self.get_preference(user_id)
        if not preference:
            return None
        _merge(preference, updates)
        preference.updated_at = utcnow()
        preference = self.save(preference)
        logger.info("Updated ride preference for user %s", user_id)
        return preference

    # Alert board

    def list_alerts(self) -> List[SystemAlert]:
        return list(self.session.exec(
            select(SystemAlert).order_by(SystemAlert.created_at.desc(), SystemAlert.id.desc())
        ).all())

    def create_alert(self, data: SystemAlertCreate) -> SystemAlert:
        alert = self.save(SystemAlert.model_validate(data))
        logger.info("Created %s alert %s: %s", alert.severity.value, alert.id, alert.title)
        return alert

    def update_alert(self, alert_id: int, updates: SystemAlertUpdate) -> Optional[SystemAlert]:
        alert = self.session.get(SystemAlert, alert_id)
        if not alert:
            return None
        was_resolved = alert.is_resolved
        _merge(alert, updates)
        if alert.is_resolved and not was_resolved and alert.resolved_at is None:
            alert.resolved_at = utcnow()
        alert = self.save(alert)
        logger.info("Updated alert %s (resolved=%s)", alert_id, alert.is_resolved)
        return alert
