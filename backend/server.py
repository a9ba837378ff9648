from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request, Response
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
import uuid
from datetime import datetime, timezone, timedelta, date
import httpx
import random
import re
from passlib.context import CryptContext
from jose import JWTError, jwt

from appointment_schedule import (
    ParseError,
    appointment_timestamp,
    canonical_schedule,
    classify_appointments,
    parse_calendar_date,
    select_nearest_appointment,
)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Auth Configuration
SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "fallback_secret_key_change_in_production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))  # 7 days

# Password hashing configuration
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# MongoDB connection
mongo_url = os.environ['MONGO_URL']
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ['DB_NAME']]

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

HEALTH_DATA_TYPES = {"blood_pressure", "heart_rate", "glucose", "weight", "temperature"}

SLOT_HOURS = [8, 9, 10, 11, 13, 14, 15, 16, 17]

DEFAULT_DOCTORS = [
    {"name": "Dr. Carlos Mendes", "specialty": "Cardiology"},
    {"name": "Dr. Ana Santos", "specialty": "Geriatrics"},
    {"name": "Dr. Roberto Lima", "specialty": "Neurology"},
    {"name": "Dr. Helena Costa", "specialty": "Geriatrics"},
]

DEFAULT_LOCATIONS = [
    {"name": "Central Clinic", "address": "1000 Paulista Ave", "city": "Sao Paulo"},
    {"name": "St. Luke Hospital", "address": "500 Augusta St", "city": "Sao Paulo"},
    {"name": "Gardens Medical Center", "address": "800 Santos Ave", "city": "Sao Paulo"},
]

# ==================== HELPERS ====================

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def normalize_hhmm(value: str) -> str:
    """Normalize time values into HH:MM."""
    if not value:
        return ""
    value = value.strip()
    match = re.match(r"^(\d{1,2}):(\d{1,2})$", value)
    if not match:
        return value
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        return value
    return f"{hour:02d}:{minute:02d}"

def parse_yyyy_mm_dd(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None

def normalize_yyyy_mm_dd(value: Optional[str]) -> Optional[str]:
    parsed = parse_yyyy_mm_dd(value)
    return parsed.isoformat() if parsed else None

def normalize_health_data_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = re.sub(r"(?<!^)(?=[A-Z])", "_", value.strip()).lower()
    return cleaned if cleaned in HEALTH_DATA_TYPES else None

def public_user(user_doc: dict) -> dict:
    doc = {k: v for k, v in user_doc.items() if k not in {"_id", "hashed_password"}}
    for key in ("created_at", "updated_at"):
        if isinstance(doc.get(key), datetime):
            doc[key] = doc[key].isoformat()
    return doc

def format_appointment(appointment: dict, doctors: dict, locations: dict) -> dict:
    """Attach doctor and location reference data to a stored appointment."""
    doctor = doctors.get(appointment.get("doctor_id")) or {}
    location = locations.get(appointment.get("location_id")) or {}
    return {
        "id": appointment["id"],
        "date": appointment.get("date"),
        "time": appointment.get("time"),
        "confirmed": appointment.get("confirmed", False),
        "user_id": appointment.get("user_id"),
        "doctor_id": appointment.get("doctor_id"),
        "location_id": appointment.get("location_id"),
        "created_at": appointment.get("created_at"),
        "doctor": {
            "doctor_id": doctor.get("id"),
            "doctor_name": doctor.get("name"),
            "specialty": doctor.get("specialty")
        },
        "location": {
            "location_id": location.get("id"),
            "location_name": location.get("name"),
            "location_address": location.get("address"),
            "location_city": location.get("city")
        }
    }

def build_time_slots(booked_times: set) -> List[dict]:
    slots = []
    for hour in SLOT_HOURS:
        for minute in (0, 30):
            slot_time = f"{hour:02d}:{minute:02d}"
            slots.append({
                "id": len(slots) + 1,
                "time": slot_time,
                "available": slot_time not in booked_times
            })
    return slots

def google_maps_link(latitude: float, longitude: float) -> str:
    return f"https://www.google.com/maps?q={latitude:.6f},{longitude:.6f}"

# ==================== MODELS ====================

class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    location_permission: bool = False
    hashed_password: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class UserCreate(BaseModel):
    first_name: str
    last_name: str
    email: str
    password: str
    phone: Optional[str] = None

class UserLogin(BaseModel):
    email: str
    password: str

class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

class LocationPermissionUpdate(BaseModel):
    location_permission: bool

class Appointment(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"appt_{uuid.uuid4().hex[:12]}")
    user_id: str
    doctor_id: str
    location_id: str
    date: str
    time: str
    confirmed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class AppointmentCreate(BaseModel):
    doctor_id: str
    location_id: str
    date: str
    time: str

class AppointmentReschedule(BaseModel):
    date: str
    time: str
    doctor_id: Optional[str] = None
    location_id: Optional[str] = None

class AppointmentConfirm(BaseModel):
    confirmed: bool = True

class EmergencyContact(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"emergency_{uuid.uuid4().hex[:12]}")
    user_id: str
    name: str
    phone: str
    relationship: str
    is_main_contact: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class EmergencyContactCreate(BaseModel):
    name: str
    phone: str
    relationship: str
    is_main_contact: bool = False

class EmergencyContactUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    relationship: Optional[str] = None
    is_main_contact: Optional[bool] = None

class Medication(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"med_{uuid.uuid4().hex[:12]}")
    user_id: str
    name: str
    dosage: str
    time: str
    reminder: bool = False
    taken: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class MedicationCreate(BaseModel):
    name: str
    dosage: str
    time: str

class MedicationStatusUpdate(BaseModel):
    taken: Optional[bool] = None
    reminder: Optional[bool] = None

class HealthData(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=lambda: f"health_{uuid.uuid4().hex[:12]}")
    user_id: str
    type: str  # blood_pressure, heart_rate, glucose, weight, temperature
    value: float
    secondary_value: Optional[float] = None
    date: str
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class HealthDataCreate(BaseModel):
    type: str
    value: float
    secondary_value: Optional[float] = None
    date: str
    notes: Optional[str] = None

class LocationShareRequest(BaseModel):
    latitude: float
    longitude: float
    reason: str = "manual_share"

# ==================== AUTHENTICATION ====================

async def get_current_user(request: Request) -> User:
    """Get current user from JWT token in cookie or Authorization header"""
    token = request.cookies.get("access_token")

    # Fallback to Authorization header
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid authentication token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    user_doc = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if not user_doc:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user_doc)

def require_same_user(current_user: User, user_id: str):
    if current_user.user_id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")

async def load_reference_maps() -> tuple:
    doctors = await db.doctors.find({}, {"_id": 0}).to_list(500)
    locations = await db.locations.find({}, {"_id": 0}).to_list(500)
    return {d["id"]: d for d in doctors}, {loc["id"]: loc for loc in locations}

async def list_formatted_appointments(owner_id: str) -> List[dict]:
    appointments = await db.appointments.find(
        {"user_id": owner_id},
        {"_id": 0}
    ).sort([("date", 1), ("time", 1)]).to_list(500)
    doctors, locations = await load_reference_maps()
    return [format_appointment(a, doctors, locations) for a in appointments]

async def get_formatted_appointment(appointment_id: str, owner_id: str) -> dict:
    appointment = await db.appointments.find_one({"id": appointment_id, "user_id": owner_id}, {"_id": 0})
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    doctors, locations = await load_reference_maps()
    return format_appointment(appointment, doctors, locations)

def require_canonical_schedule(date_value: str, time_value: str) -> tuple:
    """Stored slots are always (YYYY-MM-DD, HH:MM) so one instant has one key."""
    try:
        return canonical_schedule(date_value, time_value)
    except ParseError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid appointment date or time: {exc.reason}")

async def is_time_slot_available(
    doctor_id: str,
    location_id: str,
    date_value: str,
    time_value: str,
    exclude_id: Optional[str] = None
) -> bool:
    """date_value and time_value must already be canonical."""
    query = {
        "doctor_id": doctor_id,
        "location_id": location_id,
        "date": date_value,
        "time": time_value
    }
    if exclude_id:
        query["id"] = {"$ne": exclude_id}
    existing = await db.appointments.find_one(query, {"_id": 0, "id": 1})
    if existing:
        logger.info(f"Slot taken by appointment {existing['id']}: {query}")
    return existing is None

async def notify_location_share(user: User, share_doc: dict, contacts: List[dict]) -> dict:
    """
    POST the location share envelope to the configured notification webhook.
    Hook URL: LOCATION_SHARE_WEBHOOK_URL
    """
    url = os.environ.get("LOCATION_SHARE_WEBHOOK_URL", "").strip()
    if not url:
        return {"sent": False, "reason": "hook_not_configured"}

    envelope = {
        "event_type": "location_share",
        "user_id": user.user_id,
        "user_name": f"{user.first_name} {user.last_name}".strip(),
        "occurred_at": share_doc["shared_at"],
        "location": {
            "latitude": share_doc["latitude"],
            "longitude": share_doc["longitude"],
            "maps_url": google_maps_link(share_doc["latitude"], share_doc["longitude"])
        },
        "reason": share_doc["reason"],
        "recipients": [
            {"name": c.get("name"), "phone": c.get("phone"), "is_main_contact": c.get("is_main_contact", False)}
            for c in contacts
        ]
    }
    try:
        async with httpx.AsyncClient(timeout=8.0) as http_client:
            response = await http_client.post(url, json=envelope)
        ok = 200 <= response.status_code < 300
        result = {"sent": ok, "status_code": response.status_code}
        if not ok:
            result["reason"] = (response.text or "non_2xx")[:240]
        return result
    except httpx.HTTPError as exc:
        logger.error(f"Location share hook failed: {exc}")
        return {"sent": False, "reason": str(exc)[:240]}

async def ensure_reference_data():
    """Seed doctors and clinic locations on an empty database."""
    if await db.doctors.count_documents({}, limit=1) == 0:
        await db.doctors.insert_many([
            {"id": f"doctor_{uuid.uuid4().hex[:12]}", "image": None, **d} for d in DEFAULT_DOCTORS
        ])
        logger.info(f"Seeded {len(DEFAULT_DOCTORS)} doctors")
    if await db.locations.count_documents({}, limit=1) == 0:
        await db.locations.insert_many([
            {"id": f"location_{uuid.uuid4().hex[:12]}", **loc} for loc in DEFAULT_LOCATIONS
        ])
        logger.info(f"Seeded {len(DEFAULT_LOCATIONS)} locations")

# ==================== USER ROUTES ====================

@api_router.post("/users/signup")
async def signup(user_data: UserCreate):
    """Register a new user"""
    email = user_data.email.strip().lower()
    existing_user = await db.users.find_one({"email": email})
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    user_id = f"user_{uuid.uuid4().hex[:12]}"
    now = datetime.now(timezone.utc)
    new_user = {
        "user_id": user_id,
        "first_name": user_data.first_name.strip(),
        "last_name": user_data.last_name.strip(),
        "email": email,
        "phone": user_data.phone,
        "location_permission": False,
        "hashed_password": get_password_hash(user_data.password),
        "created_at": now.isoformat(),
        "updated_at": now.isoformat()
    }
    await db.users.insert_one(new_user)
    logger.info(f"Registered user {user_id}")
    return {"message": "User registered successfully", "user_id": user_id}

@api_router.post("/users/login")
async def login(response: Response, form_data: UserLogin):
    """Login user and set JWT cookie"""
    user_doc = await db.users.find_one({"email": form_data.email.strip().lower()})
    if not user_doc or not verify_password(form_data.password, user_doc["hashed_password"]):
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    access_token = create_access_token(
        data={"sub": user_doc["user_id"], "email": user_doc["email"]},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=True,
        samesite="none",
        path="/",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )

    return {"user_id": user_doc["user_id"], "email": user_doc["email"], "token": access_token}

@api_router.post("/users/logout")
async def logout(response: Response):
    """Logout user"""
    response.delete_cookie(key="access_token", path="/")
    return {"message": "Logged out"}

@api_router.get("/users/me")
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return public_user(current_user.model_dump())

@api_router.get("/users/email-available")
async def email_available(email: str):
    existing = await db.users.find_one({"email": email.strip().lower()}, {"_id": 0, "user_id": 1})
    return {"available": existing is None}

@api_router.get("/users/{user_id}", response_model=dict)
async def get_user(user_id: str, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    return public_user(current_user.model_dump())

@api_router.put("/users/{user_id}", response_model=dict)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(get_current_user)
):
    require_same_user(current_user, user_id)
    update_data = {k: v for k, v in user_data.model_dump().items() if v is not None}
    if "email" in update_data:
        update_data["email"] = update_data["email"].strip().lower()
        taken = await db.users.find_one(
            {"email": update_data["email"], "user_id": {"$ne": user_id}},
            {"_id": 0, "user_id": 1}
        )
        if taken:
            raise HTTPException(status_code=400, detail="Email already registered")
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    await db.users.update_one({"user_id": user_id}, {"$set": update_data})
    updated = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    return public_user(updated)

@api_router.delete("/users/{user_id}")
async def delete_user(user_id: str, current_user: User = Depends(get_current_user)):
    """Delete the account and everything it owns"""
    require_same_user(current_user, user_id)
    for collection in ("appointments", "emergency_contacts", "medications", "health_data", "location_shares"):
        await db[collection].delete_many({"user_id": user_id})
    await db.users.delete_one({"user_id": user_id})
    logger.info(f"Deleted user {user_id}")
    return {"message": "User deleted"}

@api_router.get("/users/{user_id}/location-permission")
async def get_location_permission(user_id: str, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    user_doc = await db.users.find_one({"user_id": user_id}, {"_id": 0, "location_permission": 1})
    if not user_doc:
        raise HTTPException(status_code=404, detail="User not found")
    return {"location_permission": bool(user_doc.get("location_permission", False))}

@api_router.put("/users/{user_id}/location-permission")
async def update_location_permission(
    user_id: str,
    payload: LocationPermissionUpdate,
    current_user: User = Depends(get_current_user)
):
    require_same_user(current_user, user_id)
    result = await db.users.update_one(
        {"user_id": user_id},
        {"$set": {
            "location_permission": payload.location_permission,
            "updated_at": datetime.now(timezone.utc).isoformat()
        }}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user_id": user_id, "location_permission": payload.location_permission}

# ==================== DOCTORS & LOCATIONS ====================

@api_router.get("/doctors", response_model=List[dict])
async def get_doctors(specialty: Optional[str] = None):
    query = {"specialty": specialty} if specialty else {}
    return await db.doctors.find(query, {"_id": 0}).sort("name", 1).to_list(500)

@api_router.get("/doctors/specialties", response_model=List[str])
async def get_specialties():
    doctors = await db.doctors.find({}, {"_id": 0, "specialty": 1}).sort("name", 1).to_list(500)
    seen = []
    for doctor in doctors:
        specialty = doctor.get("specialty")
        if specialty and specialty not in seen:
            seen.append(specialty)
    return seen

@api_router.get("/doctors/{doctor_id}", response_model=dict)
async def get_doctor(doctor_id: str):
    doctor = await db.doctors.find_one({"id": doctor_id}, {"_id": 0})
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return doctor

@api_router.get("/locations", response_model=List[dict])
async def get_locations():
    return await db.locations.find({}, {"_id": 0}).sort("name", 1).to_list(500)

@api_router.get("/locations/{location_id}", response_model=dict)
async def get_location(location_id: str):
    location = await db.locations.find_one({"id": location_id}, {"_id": 0})
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")
    return location

# ==================== APPOINTMENTS ====================

@api_router.get("/appointments", response_model=List[dict])
async def get_appointments(current_user: User = Depends(get_current_user)):
    return await list_formatted_appointments(current_user.user_id)

@api_router.get("/appointments/overview", response_model=dict)
async def get_appointment_overview(current_user: User = Depends(get_current_user)):
    """Upcoming and past appointments plus the nearest upcoming one"""
    appointments = await list_formatted_appointments(current_user.user_id)
    now = datetime.now()
    partition = classify_appointments(appointments, now=now)
    return {
        "upcoming": partition.upcoming,
        "past": partition.past,
        "nearest": select_nearest_appointment(partition.upcoming, now=now)
    }

@api_router.get("/appointments/next")
async def get_next_appointment(current_user: User = Depends(get_current_user)):
    appointments = await list_formatted_appointments(current_user.user_id)
    return select_nearest_appointment(appointments, now=datetime.now())

@api_router.get("/appointments/range", response_model=List[dict])
async def get_appointments_in_range(
    start_date: str,
    end_date: str,
    current_user: User = Depends(get_current_user)
):
    try:
        start = parse_calendar_date(start_date).date()
        end = parse_calendar_date(end_date).date()
    except ParseError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid date range: {exc.reason}")
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    in_range = []
    for appointment in await list_formatted_appointments(current_user.user_id):
        try:
            day = appointment_timestamp(appointment).date()
        except ParseError as exc:
            logger.warning(f"Skipping appointment {appointment['id']}: {exc}")
            continue
        if start <= day <= end:
            in_range.append(appointment)
    return in_range

@api_router.get("/appointments/available-slots", response_model=List[dict])
async def get_available_slots(
    date: str,
    doctor_id: str,
    location_id: str,
    current_user: User = Depends(get_current_user)
):
    try:
        day = parse_calendar_date(date).strftime("%Y-%m-%d")
    except ParseError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid date: {exc.reason}")
    booked = await db.appointments.find(
        {"doctor_id": doctor_id, "location_id": location_id, "date": day},
        {"_id": 0, "time": 1}
    ).to_list(200)
    return build_time_slots({normalize_hhmm(b.get("time", "")) for b in booked})

@api_router.post("/appointments", response_model=dict, status_code=201)
async def create_appointment(
    appointment: AppointmentCreate,
    current_user: User = Depends(get_current_user)
):
    date_value, time_value = require_canonical_schedule(appointment.date, appointment.time)
    if not await db.doctors.find_one({"id": appointment.doctor_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=404, detail="Doctor not found")
    if not await db.locations.find_one({"id": appointment.location_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=404, detail="Location not found")

    if not await is_time_slot_available(appointment.doctor_id, appointment.location_id, date_value, time_value):
        raise HTTPException(status_code=409, detail="This time slot is already booked")

    appt_obj = Appointment(
        user_id=current_user.user_id,
        **{**appointment.model_dump(), "date": date_value, "time": time_value}
    )
    doc = appt_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    doc["updated_at"] = doc["updated_at"].isoformat()
    await db.appointments.insert_one(doc)
    logger.info(f"Created appointment {doc['id']} for {current_user.user_id}")
    return await get_formatted_appointment(doc["id"], current_user.user_id)

@api_router.put("/appointments/confirmed/{appointment_id}", response_model=dict)
async def confirm_appointment(
    appointment_id: str,
    payload: AppointmentConfirm,
    current_user: User = Depends(get_current_user)
):
    result = await db.appointments.update_one(
        {"id": appointment_id, "user_id": current_user.user_id},
        {"$set": {"confirmed": payload.confirmed, "updated_at": datetime.now(timezone.utc).isoformat()}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return await get_formatted_appointment(appointment_id, current_user.user_id)

@api_router.put("/appointments/{appointment_id}", response_model=dict)
async def reschedule_appointment(
    appointment_id: str,
    payload: AppointmentReschedule,
    current_user: User = Depends(get_current_user)
):
    date_value, time_value = require_canonical_schedule(payload.date, payload.time)
    existing = await db.appointments.find_one(
        {"id": appointment_id, "user_id": current_user.user_id},
        {"_id": 0, "doctor_id": 1, "location_id": 1}
    )
    if not existing:
        raise HTTPException(status_code=404, detail="Appointment not found")

    available = await is_time_slot_available(
        payload.doctor_id or existing.get("doctor_id"),
        payload.location_id or existing.get("location_id"),
        date_value,
        time_value,
        exclude_id=appointment_id
    )
    if not available:
        raise HTTPException(status_code=409, detail="This time slot is already booked")

    update_data = {k: v for k, v in payload.model_dump().items() if v is not None}
    update_data["date"] = date_value
    update_data["time"] = time_value
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    result = await db.appointments.update_one(
        {"id": appointment_id, "user_id": current_user.user_id},
        {"$set": update_data}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return await get_formatted_appointment(appointment_id, current_user.user_id)

@api_router.delete("/appointments/{appointment_id}")
async def cancel_appointment(
    appointment_id: str,
    current_user: User = Depends(get_current_user)
):
    result = await db.appointments.delete_one({"id": appointment_id, "user_id": current_user.user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return {"message": "Appointment cancelled"}

# ==================== EMERGENCY CONTACTS ====================

@api_router.get("/emergency-contacts", response_model=List[dict])
async def get_emergency_contacts(current_user: User = Depends(get_current_user)):
    contacts = await db.emergency_contacts.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).sort([("is_main_contact", -1), ("name", 1)]).to_list(100)
    return contacts

@api_router.post("/emergency-contacts", response_model=dict, status_code=201)
async def create_emergency_contact(
    contact: EmergencyContactCreate,
    current_user: User = Depends(get_current_user)
):
    if contact.is_main_contact:
        await db.emergency_contacts.update_many(
            {"user_id": current_user.user_id},
            {"$set": {"is_main_contact": False, "updated_at": datetime.now(timezone.utc).isoformat()}}
        )

    contact_obj = EmergencyContact(user_id=current_user.user_id, **contact.model_dump())
    doc = contact_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    doc["updated_at"] = doc["updated_at"].isoformat()
    await db.emergency_contacts.insert_one(doc)
    doc.pop("_id", None)
    return doc

@api_router.put("/emergency-contacts/{contact_id}", response_model=dict)
async def update_emergency_contact(
    contact_id: str,
    contact: EmergencyContactUpdate,
    current_user: User = Depends(get_current_user)
):
    update_data = {k: v for k, v in contact.model_dump().items() if v is not None}
    if update_data.get("is_main_contact") is True:
        await db.emergency_contacts.update_many(
            {"user_id": current_user.user_id, "id": {"$ne": contact_id}},
            {"$set": {"is_main_contact": False, "updated_at": datetime.now(timezone.utc).isoformat()}}
        )
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    result = await db.emergency_contacts.update_one(
        {"id": contact_id, "user_id": current_user.user_id},
        {"$set": update_data}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Emergency contact not found")
    updated = await db.emergency_contacts.find_one({"id": contact_id, "user_id": current_user.user_id}, {"_id": 0})
    return updated

@api_router.delete("/emergency-contacts/{contact_id}")
async def delete_emergency_contact(
    contact_id: str,
    current_user: User = Depends(get_current_user)
):
    result = await db.emergency_contacts.delete_one({"id": contact_id, "user_id": current_user.user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Emergency contact not found")
    return {"message": "Emergency contact deleted"}

# ==================== MEDICATIONS ====================

@api_router.get("/medications", response_model=List[dict])
async def get_medications(current_user: User = Depends(get_current_user)):
    meds = await db.medications.find({"user_id": current_user.user_id}, {"_id": 0}).sort("time", 1).to_list(300)
    return meds

@api_router.post("/medications", response_model=dict, status_code=201)
async def create_medication(
    medication: MedicationCreate,
    current_user: User = Depends(get_current_user)
):
    name = medication.name.strip()
    existing = await db.medications.find_one({"user_id": current_user.user_id, "name": name}, {"_id": 0, "id": 1})
    if existing:
        raise HTTPException(status_code=409, detail="Medication already registered")

    med_obj = Medication(
        user_id=current_user.user_id,
        name=name,
        dosage=medication.dosage.strip(),
        time=normalize_hhmm(medication.time)
    )
    doc = med_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    doc["updated_at"] = doc["updated_at"].isoformat()
    await db.medications.insert_one(doc)
    if "_id" in doc:
        del doc["_id"]
    return doc

@api_router.delete("/medications/reset")
async def reset_medications(current_user: User = Depends(get_current_user)):
    """Remove every medication of the current user"""
    result = await db.medications.delete_many({"user_id": current_user.user_id})
    return {"message": f"Removed {result.deleted_count} medications", "deleted_count": result.deleted_count}

@api_router.post("/medications/reset-taken")
async def reset_medications_taken(current_user: User = Depends(get_current_user)):
    """Mark all medications as not taken (for new day)"""
    await db.medications.update_many(
        {"user_id": current_user.user_id},
        {"$set": {"taken": False, "updated_at": datetime.now(timezone.utc).isoformat()}}
    )
    return {"message": "All medications reset"}

@api_router.get("/medications/{medication_id}", response_model=dict)
async def get_medication(medication_id: str, current_user: User = Depends(get_current_user)):
    med = await db.medications.find_one({"id": medication_id, "user_id": current_user.user_id}, {"_id": 0})
    if not med:
        raise HTTPException(status_code=404, detail="Medication not found")
    return med

@api_router.put("/medications/{medication_id}", response_model=dict)
async def update_medication(
    medication_id: str,
    medication: MedicationStatusUpdate,
    current_user: User = Depends(get_current_user)
):
    update_data = {k: v for k, v in medication.model_dump().items() if v is not None}
    if not update_data:
        raise HTTPException(status_code=400, detail="Nothing to update: send taken or reminder")
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    result = await db.medications.update_one(
        {"id": medication_id, "user_id": current_user.user_id},
        {"$set": update_data}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Medication not found")
    updated = await db.medications.find_one({"id": medication_id, "user_id": current_user.user_id}, {"_id": 0})
    return updated

@api_router.delete("/medications/{medication_id}")
async def delete_medication(
    medication_id: str,
    current_user: User = Depends(get_current_user)
):
    result = await db.medications.delete_one({"id": medication_id, "user_id": current_user.user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Medication not found")
    return {"message": "Medication deleted"}

# ==================== HEALTH DATA ====================

def validate_health_data(payload: HealthDataCreate) -> dict:
    data_type = normalize_health_data_type(payload.type)
    if not data_type:
        raise HTTPException(status_code=400, detail=f"Invalid health data type: {payload.type}")
    normalized_date = normalize_yyyy_mm_dd(payload.date)
    if not normalized_date:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")
    return {**payload.model_dump(), "type": data_type, "date": normalized_date}

@api_router.get("/health-data", response_model=List[dict])
async def get_health_data(
    type: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    current_user: User = Depends(get_current_user)
):
    query = {"user_id": current_user.user_id}
    if type:
        data_type = normalize_health_data_type(type)
        if not data_type:
            raise HTTPException(status_code=400, detail=f"Invalid health data type: {type}")
        query["type"] = data_type
    if start_date and end_date:
        start = normalize_yyyy_mm_dd(start_date)
        end = normalize_yyyy_mm_dd(end_date)
        if not start or not end:
            raise HTTPException(status_code=400, detail="start_date and end_date must be YYYY-MM-DD")
        query["date"] = {"$gte": start, "$lte": end}
    return await db.health_data.find(query, {"_id": 0}).sort(
        [("date", -1), ("created_at", -1)]
    ).to_list(1000)

@api_router.post("/health-data", response_model=dict, status_code=201)
async def create_health_data(
    payload: HealthDataCreate,
    current_user: User = Depends(get_current_user)
):
    data_obj = HealthData(user_id=current_user.user_id, **validate_health_data(payload))
    doc = data_obj.model_dump()
    doc["created_at"] = doc["created_at"].isoformat()
    doc["updated_at"] = doc["updated_at"].isoformat()
    await db.health_data.insert_one(doc)
    doc.pop("_id", None)
    return doc

@api_router.post("/health-data/sample")
async def generate_sample_health_data(current_user: User = Depends(get_current_user)):
    """Seed a week of sample readings for a user with no data yet"""
    if await db.health_data.count_documents({"user_id": current_user.user_id}, limit=1):
        return {"message": "Health data already present", "created": 0}

    today = datetime.now(timezone.utc).date()
    docs = []
    for offset in range(6, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        readings = [
            ("blood_pressure", random.randint(110, 129), random.randint(70, 84)),
            ("heart_rate", random.randint(65, 84), None),
            ("glucose", random.randint(80, 119), None),
            ("weight", round(random.uniform(68.0, 72.0), 1), None),
            ("temperature", round(random.uniform(36.1, 37.0), 1), None),
        ]
        for data_type, value, secondary in readings:
            doc = HealthData(
                user_id=current_user.user_id,
                type=data_type,
                value=value,
                secondary_value=secondary,
                date=day
            ).model_dump()
            doc["created_at"] = doc["created_at"].isoformat()
            doc["updated_at"] = doc["updated_at"].isoformat()
            docs.append(doc)
    await db.health_data.insert_many(docs)
    return {"message": "Sample health data generated", "created": len(docs)}

@api_router.get("/health-data/summary", response_model=dict)
async def get_health_data_summary(current_user: User = Depends(get_current_user)):
    readings = await db.health_data.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).sort([("date", -1), ("created_at", -1)]).to_list(2000)
    summary = {}
    for reading in readings:
        entry = summary.setdefault(reading["type"], {"latest": reading, "count": 0, "total": 0.0})
        entry["count"] += 1
        entry["total"] += float(reading.get("value") or 0)
    return {
        data_type: {
            "latest": entry["latest"],
            "count": entry["count"],
            "average": round(entry["total"] / entry["count"], 2)
        }
        for data_type, entry in summary.items()
    }

@api_router.get("/health-data/{data_id}", response_model=dict)
async def get_health_data_item(data_id: str, current_user: User = Depends(get_current_user)):
    item = await db.health_data.find_one({"id": data_id, "user_id": current_user.user_id}, {"_id": 0})
    if not item:
        raise HTTPException(status_code=404, detail="Health data not found")
    return item

@api_router.put("/health-data/{data_id}", response_model=dict)
async def update_health_data(
    data_id: str,
    payload: HealthDataCreate,
    current_user: User = Depends(get_current_user)
):
    update_data = validate_health_data(payload)
    update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
    result = await db.health_data.update_one(
        {"id": data_id, "user_id": current_user.user_id},
        {"$set": update_data}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Health data not found")
    return await db.health_data.find_one({"id": data_id, "user_id": current_user.user_id}, {"_id": 0})

@api_router.delete("/health-data/{data_id}")
async def delete_health_data(data_id: str, current_user: User = Depends(get_current_user)):
    result = await db.health_data.delete_one({"id": data_id, "user_id": current_user.user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Health data not found")
    return {"message": "Health data deleted"}

# ==================== LOCATION SHARING ====================

@api_router.post("/location/share", response_model=dict)
async def share_location(
    payload: LocationShareRequest,
    current_user: User = Depends(get_current_user)
):
    if not current_user.location_permission:
        raise HTTPException(status_code=403, detail="Location sharing is not enabled for this user")

    contacts = await db.emergency_contacts.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).sort([("is_main_contact", -1), ("name", 1)]).to_list(20)

    share_doc = {
        "id": f"locshare_{uuid.uuid4().hex[:12]}",
        "user_id": current_user.user_id,
        "reason": (payload.reason or "manual_share").strip()[:100],
        "latitude": payload.latitude,
        "longitude": payload.longitude,
        "notified_contacts": [c["id"] for c in contacts],
        "shared_at": datetime.now(timezone.utc).isoformat()
    }
    hook_result = await notify_location_share(current_user, share_doc, contacts)
    share_doc["hook_result"] = hook_result
    await db.location_shares.insert_one(share_doc)
    share_doc.pop("_id", None)
    return {
        "message": "Location shared with emergency contacts.",
        "location_share": share_doc,
        "maps_url": google_maps_link(payload.latitude, payload.longitude),
        "emergency_contacts": contacts,
        "hook_result": hook_result
    }

@api_router.get("/location/shares", response_model=List[dict])
async def get_location_shares(
    limit: int = 20,
    current_user: User = Depends(get_current_user)
):
    safe_limit = max(1, min(limit, 100))
    return await db.location_shares.find(
        {"user_id": current_user.user_id},
        {"_id": 0}
    ).sort("shared_at", -1).to_list(safe_limit)

# ==================== SERVICE ROUTES ====================

@api_router.get("/")
async def root():
    return {"message": "ElderCare API"}

@api_router.get("/health")
async def health_check():
    try:
        await db.command("ping")
    except Exception as exc:
        logger.error(f"Database ping failed: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def seed_reference_data():
    await ensure_reference_data()

@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
