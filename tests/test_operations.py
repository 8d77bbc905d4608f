from datetime import datetime, timedelta

import pytest

from models import (
    BookingStatus, ParkingSpotUpdate, ParkingStationUpdate, RideBookingCreate, RideStatus, RideType,
    SystemAlertUpdate, utcnow,
)
from park_ride_operations import EntryWindowError, LifecycleError, NotFoundError, OperationError


# Entry verification

def test_verify_entry_checks_in(storage, system, make_booking):
    booking = make_booking()
    verified = system.verify_entry(storage, booking.qr_code)
    assert verified.id == booking.id
    assert verified.status == BookingStatus.active
    assert verified.check_in_time is not None


def test_verify_entry_is_idempotent(storage, system, make_booking):
    booking = make_booking()
    first = system.verify_entry(storage, booking.qr_code)
    check_in = first.check_in_time

    second = system.verify_entry(storage, booking.qr_code, now=utcnow() + timedelta(minutes=5))
    assert second.check_in_time == check_in
    assert second.status == BookingStatus.active


def test_verify_entry_unknown_code(storage, system):
    with pytest.raises(NotFoundError) as excinfo:
        system.verify_entry(storage, "PKG999999999")
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Invalid QR code"


def test_verify_entry_only_scans_demo_user(storage, system, make_booking):
    other = make_booking(user_id=7)
    with pytest.raises(NotFoundError):
        system.verify_entry(storage, other.qr_code)


def test_verify_entry_before_window(storage, system, make_booking):
    booking = make_booking(starts_in=timedelta(hours=1))
    with pytest.raises(EntryWindowError, match="not yet active"):
        system.verify_entry(storage, booking.qr_code)
    assert storage.get_booking(booking.id).check_in_time is None


def test_verify_entry_after_window(storage, system, make_booking):
    booking = make_booking(starts_in=timedelta(hours=-3), lasts=timedelta(hours=1))
    with pytest.raises(EntryWindowError, match="expired"):
        system.verify_entry(storage, booking.qr_code)
    assert storage.get_booking(booking.id).status == BookingStatus.confirmed


def test_verify_entry_accepts_window_boundaries(storage, system, make_booking):
    opening = make_booking()
    verified = system.verify_entry(storage, opening.qr_code, now=opening.start_time)
    assert verified.check_in_time == opening.start_time

    closing = make_booking()
    verified = system.verify_entry(storage, closing.qr_code, now=closing.end_time)
    assert verified.status == BookingStatus.active
    assert verified.check_in_time == closing.end_time


# Booking lifecycle

def test_cancel_booking_returns_the_spot(storage, system, make_booking):
    booking = make_booking(station_id=1)
    after_booking = storage.get_station(1).available_spots

    cancelled = system.cancel_booking(storage, booking.id)
    assert cancelled.status == BookingStatus.cancelled
    assert storage.get_station(1).available_spots == after_booking + 1


def test_cancel_booking_frees_reserved_spot(storage, system, make_booking):
    storage.update_spot(2, ParkingSpotUpdate(is_reserved=True))
    booking = make_booking(station_id=1, spot_id=2)

    system.cancel_booking(storage, booking.id)
    assert storage.get_spot(2).is_reserved is False


def test_cancel_booking_rejects_finished_bookings(storage, system, make_booking):
    booking = make_booking(status="completed")
    with pytest.raises(LifecycleError) as excinfo:
        system.cancel_booking(storage, booking.id)
    assert excinfo.value.status_code == 409

    with pytest.raises(NotFoundError):
        system.cancel_booking(storage, 999)


def test_check_out_completes_active_booking(storage, system, make_booking):
    booking = make_booking(station_id=3)
    system.verify_entry(storage, booking.qr_code)
    after_booking = storage.get_station(3).available_spots

    done = system.check_out(storage, booking.id)
    assert done.status == BookingStatus.completed
    assert done.check_out_time is not None
    assert storage.get_station(3).available_spots == after_booking + 1


def test_check_out_requires_active_booking(storage, system, make_booking):
    booking = make_booking()
    with pytest.raises(LifecycleError):
        system.check_out(storage, booking.id)


def test_released_capacity_never_exceeds_total(storage, system, make_booking):
    storage.update_station(2, ParkingStationUpdate(available_spots=0))
    booking = make_booking(station_id=2)
    storage.update_station(2, ParkingStationUpdate(available_spots=342))

    system.cancel_booking(storage, booking.id)
    assert storage.get_station(2).available_spots == 342


def test_cancel_ride(storage, system):
    ride = storage.create_ride(RideBookingCreate(
        user_id=1, pickup_location="East Plaza Hub", destination="ITPL",
        ride_type=RideType.e_rickshaw, booking_type="instant",
        estimated_cost=40.0, payment_method="upi",
    ))
    assert system.cancel_ride(storage, ride.id).status == RideStatus.cancelled
    with pytest.raises(LifecycleError):
        system.cancel_ride(storage, ride.id)


# Pricing

def test_parking_quote_bills_started_hours(storage, system):
    station = storage.get_station(1)
    start = datetime(2026, 3, 4, 12, 0)
    quote = system.quote_parking(station, start, start + timedelta(hours=2, minutes=10))
    assert quote["hours"] == 3
    assert quote["peak_pricing"] is False
    assert quote["total_cost"] == 75.0


def test_parking_quote_minimum_hour_and_peak(storage, system):
    station = storage.get_station(3)
    start = datetime(2026, 3, 4, 8, 30)
    quote = system.quote_parking(station, start, start + timedelta(minutes=20))
    assert quote["hours"] == 1
    assert quote["peak_pricing"] is True
    assert quote["total_cost"] == 30.0


def test_parking_quote_rejects_reversed_window(storage, system):
    start = datetime(2026, 3, 4, 12, 0)
    with pytest.raises(OperationError):
        system.quote_parking(storage.get_station(1), start, start - timedelta(hours=1))


def test_ride_fare_defaults_to_five_km(system):
    quote = system.estimate_ride_fare(RideType.taxi, datetime(2026, 3, 4, 13, 0))
    assert quote["distance_km"] == 5.0
    assert quote["estimated_cost"] == 110.0


def test_ride_fare_uses_distance_and_peak(system):
    quote = system.estimate_ride_fare(
        RideType.shuttle, datetime(2026, 3, 4, 18, 0),
        pickup_lat=12.9716, pickup_lng=77.5946, dropoff_lat=12.9716, dropoff_lng=77.5946,
    )
    assert quote["distance_km"] == 0.0
    assert quote["estimated_cost"] == 45.0


# QR pass and dashboard

def test_generate_qr_returns_png(system, make_booking):
    png = system.generate_qr(make_booking())
    assert png.startswith(b"\x89PNG")


def test_admin_stats(storage, system):
    stats = system.admin_stats(storage)
    assert stats["total_spots"] == 456 + 342 + 678
    occupied = (456 - 154) + (342 - 38) + (678 - 234)
    assert stats["occupancy_rate"] == round(occupied / 1476 * 100, 1)
    assert stats["daily_revenue"] == occupied * 25 * 8
    assert stats["active_sensors"] == 1476 - 56
    assert stats["active_alerts"] == 3
    assert [s["name"] for s in stats["stations"]] == [
        "Metro Central Station", "East Plaza Hub", "West Junction Terminal",
    ]

    storage.update_alert(1, SystemAlertUpdate(is_resolved=True))
    assert system.admin_stats(storage)["active_alerts"] == 2
