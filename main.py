# main.py
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from functools import wraps
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlmodel import Session

from database import engine, create_db_and_tables, get_session, seed_sample_data, seed_enabled
from models import (
    UserCreate, UserRead, UserUpdate,
    ParkingStation, ParkingStationCreate, ParkingStationUpdate,
    ParkingSpot, ParkingSpotUpdate,
    ParkingBooking, ParkingBookingCreate, ParkingBookingUpdate,
    RideBooking, RideBookingCreate, RideBookingUpdate, RideType,
    PublicTransportSchedule, PublicTransportScheduleCreate, PublicTransportScheduleUpdate,
    RidePreferenceBase, RidePreferenceUpdate,
    SystemAlert, SystemAlertCreate, SystemAlertUpdate,
    as_naive_utc, utcnow,
)
from park_ride_operations import ParkRideSystem, OperationError
from storage import ParkRideStorage

logging.basicConfig(
    level=os.getenv("PARK_RIDE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    if seed_enabled:
        with Session(engine) as session:
            seed_sample_data(session)
    logger.info("Park & Ride API ready")
    yield


app = FastAPI(title="Park & Ride API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

park_ride_system = ParkRideSystem(demo_user_id=int(os.getenv("PARK_RIDE_DEMO_USER_ID", "1")))


def get_storage(session: Session = Depends(get_session)) -> ParkRideStorage:
    return ParkRideStorage(session)


def failure_message(message):
    """Turn unexpected errors inside a route into a 500 carrying `message`."""
    def wrapper(fn):
        @wraps(fn)
        def decorator(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except (HTTPException, OperationError):
                raise
            except Exception:
                logger.exception(message)
                raise HTTPException(status_code=500, detail=message)
        return decorator
    return wrapper


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(OperationError)
async def operation_exception_handler(request: Request, exc: OperationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------- Request bodies ----------

class QRVerifyIn(BaseModel):
    qr_code: Optional[str] = None


class PoolingSearchIn(BaseModel):
    pickup_location: Optional[str] = None
    destination: Optional[str] = None
    scheduled_time: Optional[datetime] = None


class RideEstimateIn(BaseModel):
    ride_type: RideType
    requested_time: Optional[datetime] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None


# ---------- Parking stations ----------

@app.get("/api/parking-stations", response_model=List[ParkingStation])
@failure_message("Failed to fetch parking stations")
def search_parking_stations(
    search: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    storage: ParkRideStorage = Depends(get_storage),
):
    return storage.search_stations(search, lat, lng)


@app.post("/api/parking-stations", response_model=ParkingStation, status_code=201)
@failure_message("Failed to create parking station")
def create_parking_station(station: ParkingStationCreate, storage: ParkRideStorage = Depends(get_storage)):
    return storage.create_station(station)


@app.get("/api/parking-stations/{station_id}", response_model=ParkingStation)
@failure_message("Failed to fetch parking station")
def get_parking_station(station_id: int, storage: ParkRideStorage = Depends(get_storage)):
    station = storage.get_station(station_id)
    if not station:
        raise HTTPException(status_code=404, detail="Parking station not found")
    return station


@app.patch("/api/parking-stations/{station_id}", response_model=ParkingStation)
@failure_message("Failed to update parking station")
def update_parking_station(station_id: int, updates: ParkingStationUpdate,
                           storage: ParkRideStorage = Depends(get_storage)):
    station = storage.update_station(station_id, updates)
    if not station:
        raise HTTPException(status_code=404, detail="Parking station not found")
    return station


@app.get("/api/parking-stations/{station_id}/quote")
@failure_message("Failed to calculate parking price")
def quote_parking(
    station_id: int,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    storage: ParkRideStorage = Depends(get_storage),
):
    station = storage.get_station(station_id)
    if not station:
        raise HTTPException(status_code=404, detail="Parking station not found")
    return park_ride_system.quote_parking(station, as_naive_utc(start_time), as_naive_utc(end_time))


# ---------- Parking spots ----------

@app.get("/api/parking-stations/{station_id}/spots", response_model=List[ParkingSpot])
@failure_message("Failed to fetch parking spots")
def list_parking_spots(station_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return storage.list_spots(station_id)


@app.patch("/api/parking-spots/{spot_id}", response_model=ParkingSpot)
@failure_message("Failed to update parking spot")
def update_parking_spot(spot_id: int, updates: ParkingSpotUpdate, storage: ParkRideStorage = Depends(get_storage)):
    spot = storage.update_spot(spot_id, updates)
    if not spot:
        raise HTTPException(status_code=404, detail="Parking spot not found")
    return spot


# ---------- Parking bookings ----------

@app.get("/api/users/{user_id}/bookings", response_model=List[ParkingBooking])
@failure_message("Failed to fetch bookings")
def list_user_bookings(user_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return storage.list_bookings_by_user(user_id)


@app.post("/api/bookings", response_model=ParkingBooking, status_code=201)
@failure_message("Failed to create booking")
def create_booking(booking: ParkingBookingCreate, storage: ParkRideStorage = Depends(get_storage)):
    return storage.create_booking(booking)


@app.get("/api/bookings/{booking_id}", response_model=ParkingBooking)
@failure_message("Failed to fetch booking")
def get_booking(booking_id: int, storage: ParkRideStorage = Depends(get_storage)):
    booking = storage.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


@app.patch("/api/bookings/{booking_id}", response_model=ParkingBooking)
@failure_message("Failed to update booking")
def update_booking(booking_id: int, updates: ParkingBookingUpdate, storage: ParkRideStorage = Depends(get_storage)):
    booking = storage.update_booking(booking_id, updates)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


@app.post("/api/bookings/{booking_id}/cancel", response_model=ParkingBooking)
@failure_message("Failed to cancel booking")
def cancel_booking(booking_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return park_ride_system.cancel_booking(storage, booking_id)


@app.post("/api/bookings/{booking_id}/check-out", response_model=ParkingBooking)
@failure_message("Failed to check out booking")
def check_out_booking(booking_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return park_ride_system.check_out(storage, booking_id)


@app.get("/api/bookings/{booking_id}/qr")
@failure_message("Failed to generate QR code")
def booking_qr_image(booking_id: int, storage: ParkRideStorage = Depends(get_storage)):
    booking = storage.get_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return Response(content=park_ride_system.generate_qr(booking), media_type="image/png")


# ---------- QR entry verification ----------

@app.post("/api/qr/verify")
@failure_message("Failed to verify QR code")
def verify_qr_code(body: QRVerifyIn, storage: ParkRideStorage = Depends(get_storage)):
    if not body.qr_code:
        raise HTTPException(status_code=400, detail="QR code is required")
    booking = park_ride_system.verify_entry(storage, body.qr_code)
    return {"message": "Entry approved", "booking": booking}


# ---------- Rides ----------

@app.get("/api/users/{user_id}/rides", response_model=List[RideBooking])
@failure_message("Failed to fetch rides")
def list_user_rides(user_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return storage.list_rides_by_user(user_id)


@app.get("/api/users/{user_id}/rides/active", response_model=List[RideBooking])
@failure_message("Failed to fetch active rides")
def list_active_rides(user_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return storage.list_active_rides(user_id)


@app.post("/api/rides", response_model=RideBooking, status_code=201)
@failure_message("Failed to create ride booking")
def create_ride(ride: RideBookingCreate, storage: ParkRideStorage = Depends(get_storage)):
    return storage.create_ride(ride)


@app.patch("/api/rides/{ride_id}", response_model=RideBooking)
@failure_message("Failed to update ride")
def update_ride(ride_id: int, updates: RideBookingUpdate, storage: ParkRideStorage = Depends(get_storage)):
    ride = storage.update_ride(ride_id, updates)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return ride


@app.post("/api/rides/{ride_id}/cancel", response_model=RideBooking)
@failure_message("Failed to cancel ride")
def cancel_ride(ride_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return park_ride_system.cancel_ride(storage, ride_id)


@app.post("/api/rides/pooling/search", response_model=List[RideBooking])
@failure_message("Failed to search pooling rides")
def search_pooling_rides(body: PoolingSearchIn, storage: ParkRideStorage = Depends(get_storage)):
    if not body.pickup_location or not body.destination or not body.scheduled_time:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: pickup_location, destination, scheduled_time",
        )
    return storage.find_pooling_rides(body.pickup_location, body.destination, as_naive_utc(body.scheduled_time))


@app.post("/api/rides/estimate")
@failure_message("Failed to estimate ride fare")
def estimate_ride(body: RideEstimateIn):
    return park_ride_system.estimate_ride_fare(
        body.ride_type,
        as_naive_utc(body.requested_time) or utcnow(),
        body.pickup_lat, body.pickup_lng, body.dropoff_lat, body.dropoff_lng,
    )


# ---------- Public transport ----------

@app.get("/api/transport/schedules", response_model=List[PublicTransportSchedule])
@failure_message("Failed to fetch transport schedules")
def list_transport_schedules(
    from_station: Optional[str] = Query(None, alias="from"),
    to_station: Optional[str] = Query(None, alias="to"),
    storage: ParkRideStorage = Depends(get_storage),
):
    return storage.list_schedules(from_station, to_station)


@app.post("/api/transport/schedules", response_model=PublicTransportSchedule, status_code=201)
@failure_message("Failed to create transport schedule")
def create_transport_schedule(schedule: PublicTransportScheduleCreate,
                              storage: ParkRideStorage = Depends(get_storage)):
    return storage.create_schedule(schedule)


@app.patch("/api/transport/schedules/{schedule_id}", response_model=PublicTransportSchedule)
@failure_message("Failed to update transport schedule")
def update_transport_schedule(schedule_id: int, updates: PublicTransportScheduleUpdate,
                              storage: ParkRideStorage = Depends(get_storage)):
    schedule = storage.update_schedule(schedule_id, updates)
    if not schedule:
        raise HTTPException(status_code=404, detail="Transport schedule not found")
    return schedule


# ---------- Ride preferences ----------

@app.get("/api/users/{user_id}/ride-preferences")
@failure_message("Failed to fetch ride preferences")
def get_ride_preferences(user_id: int, storage: ParkRideStorage = Depends(get_storage)):
    return storage.get_preference(user_id) or {}


@app.put("/api/users/{user_id}/ride-preferences")
@failure_message("Failed to update ride preferences")
def upsert_ride_preferences(user_id: int, updates: RidePreferenceUpdate,
                            storage: ParkRideStorage = Depends(get_storage)):
    if storage.get_preference(user_id):
        return storage.update_preference(user_id, updates)
    data = RidePreferenceBase.model_validate(updates.model_dump(exclude_unset=True, exclude_none=True))
    return storage.create_preference(user_id, data)


# ---------- Admin ----------

@app.get("/api/admin/alerts", response_model=List[SystemAlert])
@failure_message("Failed to fetch alerts")
def list_alerts(storage: ParkRideStorage = Depends(get_storage)):
    return storage.list_alerts()


@app.post("/api/admin/alerts", response_model=SystemAlert, status_code=201)
@failure_message("Failed to create alert")
def create_alert(alert: SystemAlertCreate, storage: ParkRideStorage = Depends(get_storage)):
    return storage.create_alert(alert)


@app.patch("/api/admin/alerts/{alert_id}", response_model=SystemAlert)
@failure_message("Failed to update alert")
def update_alert(alert_id: int, updates: SystemAlertUpdate, storage: ParkRideStorage = Depends(get_storage)):
    alert = storage.update_alert(alert_id, updates)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.get("/api/admin/stats")
@failure_message("Failed to fetch stats")
def admin_stats(storage: ParkRideStorage = Depends(get_storage)):
    return park_ride_system.admin_stats(storage)


# ---------- Users ----------

@app.post("/api/users", response_model=UserRead, status_code=201)
@failure_message("Failed to create user")
def sign_up(user: UserCreate, storage: ParkRideStorage = Depends(get_storage)):
    if storage.get_user_by_username(user.username):
        raise HTTPException(status_code=409, detail="Username taken")
    if storage.get_user_by_email(user.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    return storage.create_user(user)


@app.get("/api/users/{user_id}", response_model=UserRead)
@failure_message("Failed to fetch user")
def get_user(user_id: int, storage: ParkRideStorage = Depends(get_storage)):
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.patch("/api/users/{user_id}", response_model=UserRead)
@failure_message("Failed to update user")
def update_user(user_id: int, updates: UserUpdate, storage: ParkRideStorage = Depends(get_storage)):
    user = storage.update_user(user_id, updates)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
