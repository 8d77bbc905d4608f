# park_ride_operations.py
import io
import logging
import math
from datetime import datetime
from typing import Optional

import qrcode

from models import ParkingBooking, ParkingStation, BookingStatus, RideBooking, RideStatus, RideType, utcnow
from storage import ParkRideStorage, haversine

logger = logging.getLogger(__name__)


class OperationError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(OperationError):
    status_code = 404


class EntryWindowError(OperationError):
    status_code = 400


class LifecycleError(OperationError):
    status_code = 409


# Park-and-ride operations on top of the storage layer
class ParkRideSystem:
    def __init__(self, demo_user_id: int = 1):
        # QR scans are matched against this user's bookings
        self.demo_user_id = demo_user_id
        self.peak_multiplier = 1.5
        # base fare, per km
        self.ride_rates = {
            RideType.taxi: (50.0, 12.0),
            RideType.shared: (30.0, 8.0),
            RideType.shuttle: (30.0, 8.0),
            RideType.e_rickshaw: (20.0, 6.0),
        }
        self.default_ride_km = 5.0
        # assumptions behind the dashboard revenue and sensor figures
        self.average_hourly_rate = 25
        self.average_hours_parked = 8
        self.offline_sensors = 56

    # Entry verification

    def verify_entry(self, storage: ParkRideStorage, qr_code: str, now: Optional[datetime] = None) -> ParkingBooking:
        now = now or utcnow()
        bookings = storage.list_bookings_by_user(self.demo_user_id)
        booking = next((b for b in bookings if b.qr_code == qr_code), None)

        if booking is None:
            logger.warning("Rejected QR code %s: no matching booking", qr_code)
            raise NotFoundError("Invalid QR code")
        if now < booking.start_time:
            logger.warning("Rejected QR code %s: booking %s starts at %s", qr_code, booking.id, booking.start_time)
            raise EntryWindowError("Booking not yet active")
        if now > booking.end_time:
            logger.warning("Rejected QR code %s: booking %s ended at %s", qr_code, booking.id, booking.end_time)
            raise EntryWindowError("Booking has expired")

        # only the first scan checks in
        if booking.check_in_time is None:
            booking.check_in_time = now
            booking.status = BookingStatus.active
            booking = storage.save(booking)
            logger.info("Checked in booking %s", booking.id)
        return booking

    # Booking lifecycle

    def cancel_booking(self, storage: ParkRideStorage, booking_id: int) -> ParkingBooking:
        booking = storage.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.status not in (BookingStatus.pending, BookingStatus.confirmed):
            raise LifecycleError(f"Cannot cancel booking in status: {booking.status.value}")

        booking.status = BookingStatus.cancelled
        storage.release_capacity(booking)
        booking = storage.save(booking)
        logger.info("Cancelled booking %s", booking_id)
        return booking

    def check_out(self, storage: ParkRideStorage, booking_id: int, now: Optional[datetime] = None) -> ParkingBooking:
        booking = storage.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.status != BookingStatus.active:
            raise LifecycleError(f"Cannot check out booking in status: {booking.status.value}")

        booking.status = BookingStatus.completed
        booking.check_out_time = now or utcnow()
        storage.release_capacity(booking)
        booking = storage.save(booking)
        logger.info("Checked out booking %s", booking_id)
        return booking

    def cancel_ride(self, storage: ParkRideStorage, ride_id: int) -> RideBooking:
        ride = storage.get_ride(ride_id)
        if ride is None:
            raise NotFoundError("Ride not found")
        if ride.status in (RideStatus.completed, RideStatus.cancelled):
            raise LifecycleError(f"Cannot cancel ride in status: {ride.status.value}")

        ride.status = RideStatus.cancelled
        ride = storage.save(ride)
        logger.info("Cancelled ride %s", ride_id)
        return ride

    # Pricing

    def is_peak_hour(self, when: datetime) -> bool:
        return 7 <= when.hour <= 10 or 17 <= when.hour <= 20

    def quote_parking(self, station: ParkingStation, start_time: datetime, end_time: datetime) -> dict:
        if end_time <= start_time:
            raise OperationError("end_time must be after start_time")

        # started hours are billed in full, minimum one hour
        hours = max(1, math.ceil((end_time - start_time).total_seconds() / 3600))
        total = hours * station.hourly_rate
        peak = self.is_peak_hour(start_time)
        if peak:
            total *= self.peak_multiplier

        return {
            "station_id": station.id,
            "hours": hours,
            "hourly_rate": station.hourly_rate,
            "peak_pricing": peak,
            "total_cost": round(total, 2),
        }

    def estimate_ride_fare(self, ride_type: RideType, requested_time: datetime,
                           pickup_lat: Optional[float] = None, pickup_lng: Optional[float] = None,
                           dropoff_lat: Optional[float] = None, dropoff_lng: Optional[float] = None) -> dict:
        if None in (pickup_lat, pickup_lng, dropoff_lat, dropoff_lng):
            distance = self.default_ride_km
        else:
            distance = haversine(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)

        base_fare, per_km = self.ride_rates[ride_type]
        fare = base_fare + distance * per_km
        peak = self.is_peak_hour(requested_time)
        if peak:
            fare *= self.peak_multiplier

        return {
            "ride_type": ride_type.value,
            "distance_km": round(distance, 2),
            "peak_pricing": peak,
            "estimated_cost": round(fare, 2),
        }

    # QR pass

    def generate_qr(self, booking: ParkingBooking) -> bytes:
        qr = qrcode.QRCode(box_size=8, border=2)
        qr.add_data(booking.qr_code)
        qr.make(fit=True)
        img = qr.make_image()
        buffer = io.BytesIO()
        img.save(buffer)
        return buffer.getvalue()

    # Admin dashboard

    def admin_stats(self, storage: ParkRideStorage) -> dict:
        stations = storage.list_stations()
        total_spots = sum(s.total_spots for s in stations)
        occupied_spots = sum(s.total_spots - s.available_spots for s in stations)
        occupancy_rate = round(occupied_spots / total_spots * 100, 1) if total_spots > 0 else 0.0
        active_alerts = [a for a in storage.list_alerts() if not a.is_resolved]

        return {
            "total_spots": total_spots,
            "occupancy_rate": occupancy_rate,
            "daily_revenue": occupied_spots * self.average_hourly_rate * self.average_hours_parked,
            "active_sensors": max(total_spots - self.offline_sensors, 0),
            "active_alerts": len(active_alerts),
            "stations": [
                {
                    "id": s.id,
                    "name": s.name,
                    "occupancy_rate": round((s.total_spots - s.available_spots) / s.total_spots * 100, 1)
                    if s.total_spots else 0.0,
                }
                for s in stations
            ],
        }
