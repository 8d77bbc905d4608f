# models.py

from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, DateTime
from pydantic import field_validator
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # timestamp columns are plain DateTime, everything is stored as naive UTC
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def check_clock_time(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        datetime.strptime(value, "%H:%M")
    except ValueError:
        raise ValueError("time must be in HH:MM format")
    return value


def check_not_null(value):
    # partial updates may omit a field, but not blank out a NOT NULL column
    if value is None:
        raise ValueError("may not be null")
    return value


# Spot categories
class SpotType(str, Enum):
    standard = "standard"
    ev_charging = "ev_charging"
    disabled = "disabled"
    compact = "compact"


# Parking booking lifecycle
class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    refunded = "refunded"
    failed = "failed"


class RideType(str, Enum):
    taxi = "taxi"
    shared = "shared"
    shuttle = "shuttle"
    e_rickshaw = "e_rickshaw"


class RideBookingType(str, Enum):
    instant = "instant"
    scheduled = "scheduled"


# Ride lifecycle
class RideStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    driver_assigned = "driver_assigned"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class TransportType(str, Enum):
    metro = "metro"
    bus = "bus"


class AlertType(str, Enum):
    sensor_malfunction = "sensor_malfunction"
    high_demand = "high_demand"
    maintenance = "maintenance"
    system_update = "system_update"


class AlertSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# Users table
class UserBase(SQLModel):
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    first_name: str
    last_name: str
    phone: Optional[str] = None
    reward_points: int = Field(default=0, ge=0)
    membership_level: str = "bronze"


class User(UserBase, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class UserCreate(UserBase):
    password: str = Field(min_length=6)


class UserRead(UserBase):
    id: int
    created_at: datetime


class UserUpdate(SQLModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    reward_points: Optional[int] = Field(default=None, ge=0)
    membership_level: Optional[str] = None

    @field_validator("first_name", "last_name", "reward_points", "membership_level")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Parking stations near transit hubs
class ParkingStationBase(SQLModel):
    name: str
    address: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    total_spots: int = Field(ge=0)
    available_spots: int = Field(ge=0)
    hourly_rate: float = Field(ge=0)
    amenities: List[str] = Field(default_factory=list, sa_type=JSON)
    is_active: bool = True


class ParkingStation(ParkingStationBase, table=True):
    __tablename__ = "parking_stations"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ParkingStationCreate(ParkingStationBase):
    pass


class ParkingStationUpdate(SQLModel):
    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    total_spots: Optional[int] = Field(default=None, ge=0)
    available_spots: Optional[int] = Field(default=None, ge=0)
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    amenities: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("*")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Individual spots inside a station
class ParkingSpot(SQLModel, table=True):
    __tablename__ = "parking_spots"

    id: Optional[int] = Field(default=None, primary_key=True)
    station_id: int = Field(foreign_key="parking_stations.id", index=True)
    spot_number: str
    level: Optional[str] = None
    section: Optional[str] = None
    spot_type: SpotType = SpotType.standard
    is_occupied: bool = False
    is_reserved: bool = False
    last_updated: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ParkingSpotUpdate(SQLModel):
    spot_number: Optional[str] = None
    level: Optional[str] = None
    section: Optional[str] = None
    spot_type: Optional[SpotType] = None
    is_occupied: Optional[bool] = None
    is_reserved: Optional[bool] = None

    @field_validator("spot_number", "spot_type", "is_occupied", "is_reserved")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Parking reservations
class ParkingBookingBase(SQLModel):
    user_id: int = Field(foreign_key="users.id", index=True)
    station_id: int = Field(foreign_key="parking_stations.id", index=True)
    spot_id: Optional[int] = Field(default=None, foreign_key="parking_spots.id")
    vehicle_plate: str = Field(min_length=1)
    vehicle_type: str = Field(min_length=1)
    start_time: datetime = Field(sa_type=DateTime)
    end_time: datetime = Field(sa_type=DateTime)
    total_cost: float = Field(ge=0)
    status: BookingStatus = BookingStatus.pending
    payment_status: PaymentStatus = PaymentStatus.pending

    @field_validator("start_time", "end_time")
    @classmethod
    def to_naive_utc(cls, value):
        return as_naive_utc(value)


class ParkingBooking(ParkingBookingBase, table=True):
    __tablename__ = "parking_bookings"

    id: Optional[int] = Field(default=None, primary_key=True)
    qr_code: Optional[str] = Field(default=None, index=True)
    check_in_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    check_out_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class ParkingBookingCreate(ParkingBookingBase):
    pass


class ParkingBookingUpdate(SQLModel):
    spot_id: Optional[int] = None
    vehicle_plate: Optional[str] = Field(default=None, min_length=1)
    vehicle_type: Optional[str] = Field(default=None, min_length=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_cost: Optional[float] = Field(default=None, ge=0)
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None

    @field_validator("start_time", "end_time", "check_in_time", "check_out_time")
    @classmethod
    def to_naive_utc(cls, value):
        return as_naive_utc(value)

    @field_validator("vehicle_plate", "vehicle_type", "start_time", "end_time", "total_cost",
                     "status", "payment_status")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Last-mile rides
class RideBookingBase(SQLModel):
    user_id: int = Field(foreign_key="users.id", index=True)
    parking_booking_id: Optional[int] = Field(default=None, foreign_key="parking_bookings.id")
    pickup_location: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    ride_type: RideType
    booking_type: RideBookingType
    scheduled_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    estimated_cost: float = Field(ge=0)
    status: RideStatus = RideStatus.pending
    driver_info: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    route_info: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    pooling_enabled: bool = False
    pooled_with_rides: List[int] = Field(default_factory=list, sa_type=JSON)
    max_wait_time: int = Field(default=10, ge=0)
    payment_method: str
    estimated_arrival: Optional[datetime] = Field(default=None, sa_type=DateTime)
    actual_arrival: Optional[datetime] = Field(default=None, sa_type=DateTime)
    tracking_enabled: bool = True

    @field_validator("scheduled_time", "estimated_arrival", "actual_arrival")
    @classmethod
    def to_naive_utc(cls, value):
        return as_naive_utc(value)


class RideBooking(RideBookingBase, table=True):
    __tablename__ = "ride_bookings"

    id: Optional[int] = Field(default=None, primary_key=True)
    actual_cost: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class RideBookingCreate(RideBookingBase):
    pass


class RideBookingUpdate(SQLModel):
    pickup_location: Optional[str] = None
    destination: Optional[str] = None
    ride_type: Optional[RideType] = None
    scheduled_time: Optional[datetime] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    actual_cost: Optional[float] = Field(default=None, ge=0)
    status: Optional[RideStatus] = None
    driver_info: Optional[Dict[str, Any]] = None
    route_info: Optional[Dict[str, Any]] = None
    pooling_enabled: Optional[bool] = None
    pooled_with_rides: Optional[List[int]] = None
    max_wait_time: Optional[int] = Field(default=None, ge=0)
    payment_method: Optional[str] = None
    estimated_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    tracking_enabled: Optional[bool] = None

    @field_validator("scheduled_time", "estimated_arrival", "actual_arrival")
    @classmethod
    def to_naive_utc(cls, value):
        return as_naive_utc(value)

    @field_validator("pickup_location", "destination", "ride_type", "estimated_cost", "status",
                     "pooling_enabled", "pooled_with_rides", "max_wait_time", "payment_method",
                     "tracking_enabled")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Metro / bus timetable
class PublicTransportScheduleBase(SQLModel):
    transport_type: TransportType
    route_name: str
    route_number: Optional[str] = None
    from_station: str
    to_station: str
    departure_time: str  # HH:MM
    arrival_time: str
    frequency: int = Field(gt=0)  # minutes between services
    operating_days: List[str] = Field(default_factory=list, sa_type=JSON)
    fare: float = Field(ge=0)
    is_active: bool = True

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def validate_clock_time(cls, value):
        return check_clock_time(value)


class PublicTransportSchedule(PublicTransportScheduleBase, table=True):
    __tablename__ = "public_transport_schedules"

    id: Optional[int] = Field(default=None, primary_key=True)
    last_updated: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class PublicTransportScheduleCreate(PublicTransportScheduleBase):
    pass


class PublicTransportScheduleUpdate(SQLModel):
    route_name: Optional[str] = None
    route_number: Optional[str] = None
    from_station: Optional[str] = None
    to_station: Optional[str] = None
    departure_time: Optional[str] = None
    arrival_time: Optional[str] = None
    frequency: Optional[int] = Field(default=None, gt=0)
    operating_days: Optional[List[str]] = None
    fare: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def validate_clock_time(cls, value):
        return check_clock_time(value)

    @field_validator("route_name", "from_station", "to_station", "departure_time", "arrival_time",
                     "frequency", "operating_days", "fare", "is_active")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Per-user ride preferences
class RidePreferenceBase(SQLModel):
    preferred_ride_type: RideType = RideType.shared
    max_wait_time: int = Field(default=10, ge=0)
    pooling_preference: bool = True
    ac_preference: bool = True
    music_preference: bool = False
    preferred_payment_method: str = "wallet"
    frequent_destinations: List[str] = Field(default_factory=list, sa_type=JSON)
    commute_pattern: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)


class RidePreference(RidePreferenceBase, table=True):
    __tablename__ = "ride_preferences"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True, unique=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class RidePreferenceUpdate(SQLModel):
    preferred_ride_type: Optional[RideType] = None
    max_wait_time: Optional[int] = Field(default=None, ge=0)
    pooling_preference: Optional[bool] = None
    ac_preference: Optional[bool] = None
    music_preference: Optional[bool] = None
    preferred_payment_method: Optional[str] = None
    frequent_destinations: Optional[List[str]] = None
    commute_pattern: Optional[Dict[str, Any]] = None

    @field_validator("preferred_ride_type", "max_wait_time", "pooling_preference", "ac_preference",
                     "music_preference", "preferred_payment_method", "frequent_destinations")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)


# Admin alerts
class SystemAlertBase(SQLModel):
    type: AlertType
    severity: AlertSeverity
    title: str = Field(min_length=1)
    description: str
    station_id: Optional[int] = Field(default=None, foreign_key="parking_stations.id")
    is_resolved: bool = False


class SystemAlert(SystemAlertBase, table=True):
    __tablename__ = "system_alerts"

    id: Optional[int] = Field(default=None, primary_key=True)
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class SystemAlertCreate(SystemAlertBase):
    pass


class SystemAlertUpdate(SQLModel):
    severity: Optional[AlertSeverity] = None
    title: Optional[str] = None
    description: Optional[str] = None
    is_resolved: Optional[bool] = None

    @field_validator("*")
    @classmethod
    def reject_null(cls, value):
        return check_not_null(value)
