"""Pydantic models for the remote API payloads, derived aggregates and local stores."""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Name fields arrive as firstName, firstname or FirstName depending on the endpoint.
# Variants are tried in this order.
NAME_FIELD_VARIANTS: Dict[str, List[str]] = {
    "firstName": ["firstName", "firstname", "FirstName"],
    "lastName": ["lastName", "lastname", "LastName"],
}


class WireModel(BaseModel):
    """Base model using the camel-case field names of the remote API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp. Returns None when absent or invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_number(value: Any) -> Optional[float]:
    """Parse a number or numeric string (decimal comma allowed). Non-finite values yield None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_identifier(value: Any) -> Optional[int]:
    """Parse an integer identifier from a number or digit string. Anything else yields None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and re.fullmatch(r"[0-9]+", value.strip()):
        return int(value.strip())
    return None


def format_utc(ts: datetime) -> str:
    """UTC ISO 8601 with a Z suffix. Naive datetimes are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RawMeasurement(WireModel):
    """A heart rate sample as returned by /api/measurements/latest."""

    id: Optional[int] = Field(None, description="Measurement identifier")
    value: Any = Field(None, description="Heart rate in bpm, number or numeric string")
    device_id: Optional[str] = Field(None, description="Device identifier")
    created_at: Optional[str] = Field(None, description="ISO 8601 timestamp")
    activity_id: Optional[int] = Field(None, description="Linked activity identifier")

    @field_validator("created_at", mode="before")
    @classmethod
    def drop_non_string_timestamp(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("id", "activity_id", mode="before")
    @classmethod
    def drop_unparseable_identifier(cls, v: Any) -> Optional[int]:
        return parse_identifier(v)

    @field_validator("device_id", mode="before")
    @classmethod
    def coerce_device_id(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, (dict, list)):
            return None
        return v if isinstance(v, str) else str(v)

    @property
    def bpm(self) -> Optional[float]:
        return parse_number(self.value)

    @property
    def timestamp(self) -> Optional[datetime]:
        """Creation time in UTC. Timestamps without an offset are taken as UTC."""
        parsed = parse_timestamp(self.created_at)
        if parsed is None:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


class MeasurementPage(WireModel):
    """Response body of /api/measurements/latest."""

    items: List[RawMeasurement] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def skip_non_object_items(cls, v: Any) -> List[Any]:
        """A page that is not a list reads as empty; entries that are not objects are dropped."""
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]


class UserProfile(WireModel):
    """Cached user profile, stored under the same field names the API uses."""

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="number")
    gender: Optional[str] = None
    date_of_birth: Optional[str] = Field(None, alias="dateOfBirth")
    height_cm: Optional[float] = Field(None, alias="height")
    weight_kg: Optional[float] = Field(None, alias="weight")
    blood_type: Optional[str] = Field(None, alias="bloodType")
    latest_measurement: Optional[RawMeasurement] = Field(None, alias="latestMeasurement")
    # Display-name fallbacks only
    name: Optional[str] = None
    username: Optional[str] = None

    @field_validator("phone_number", mode="before")
    @classmethod
    def coerce_phone_number(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("height_cm", "weight_kg", mode="before")
    @classmethod
    def coerce_body_metric(cls, v: Any) -> Optional[float]:
        """Accept numbers or numeric strings; anything unparseable is dropped."""
        return parse_number(v)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UserProfile":
        """Build a profile from a loosely-cased API payload.

        For each name field the camel-case key wins, then the lowercase key,
        then the capitalized key. Empty values fall through to the next variant.
        """
        data = dict(payload)
        for canonical, variants in NAME_FIELD_VARIANTS.items():
            resolved = None
            for variant in variants:
                candidate = payload.get(variant)
                if candidate not in (None, ""):
                    resolved = candidate
                    break
            for variant in variants:
                data.pop(variant, None)
            data[canonical] = resolved
        if not isinstance(data.get("latestMeasurement"), dict):
            data["latestMeasurement"] = None
        return cls.model_validate(data)

    def merged_over(self, previous: Optional["UserProfile"]) -> "UserProfile":
        """Return this profile with empty fields filled in from ``previous``."""
        if previous is None:
            return self
        merged = previous.model_dump()
        for key, value in self.model_dump().items():
            if value not in (None, ""):
                merged[key] = value
        return UserProfile.model_validate(merged)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Activity(WireModel):
    """An activity owned by the remote API."""

    id: int
    title: str
    type: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None


class ActivityInput(WireModel):
    """Request body for creating or updating an activity."""

    title: str = Field(..., min_length=1, description="Activity title")
    type: Optional[str] = Field(None, description="Activity type")
    description: Optional[str] = Field(None, description="Free-form description")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title must not be blank")
        return v.strip()


class ActivitySlot(WireModel):
    """Average heart rate of one half-hour slot, newest slots first."""

    slot_start_iso: str = Field(..., description="Slot start, UTC ISO 8601")
    average_bpm: int = Field(..., description="Rounded average heart rate")
    sample_count: int = Field(..., description="Number of samples in the slot")
    representative_measurement_id: Optional[int] = Field(
        None, description="Newest measurement in the slot"
    )
    activity_id: Optional[int] = Field(None, description="Activity linked to the representative measurement")
    activity_label: str = Field(..., description="Activity title or placeholder label")


class WeekdayRollup(WireModel):
    """Average heart rate for one day of the week across all samples."""

    day_of_week: str
    average_bpm: int
    sample_count: int


class DayPoint(WireModel):
    """One chart point on a day's heart rate series."""

    time: str = Field(..., description="H:MM, UTC")
    bpm: int


class OverviewSummary(WireModel):
    """Aggregates shown on the overview page."""

    days: List[str] = Field(default_factory=list, description="Days with data, newest first")
    data_by_day: Dict[str, List[DayPoint]] = Field(default_factory=dict)
    weekly: List[WeekdayRollup] = Field(default_factory=list)
    latest_bpm: Optional[float] = None
    latest_date: Optional[str] = None
    average_bpm: Optional[int] = None
    total_samples: int = 0
    selected_day: Optional[str] = None
    selected_average_bpm: Optional[int] = None
    selected_samples: int = 0
    selected_active_minutes: int = 0
    week_average_heart_rate: int = 0
    week_average_steps: int = 0
    week_total_active_minutes: int = 0


class LoginRequest(BaseModel):
    """Credentials for /api/auth/login."""

    email: str = Field(..., description="Account email")
    password: str = Field(..., min_length=1, description="Account password")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("Email address must contain '@'")
        return v


class RegisterRequest(LoginRequest):
    """Sign-up form values, sent to /api/auth/register."""

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    age: Optional[Union[int, str]] = None
    gender: str = "male"
    phone: str = ""
    confirm_password: Optional[str] = None

    @model_validator(mode="after")
    def check_passwords_match(self) -> "RegisterRequest":
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords do not match")
        return self

    def to_wire(self) -> Dict[str, Any]:
        """Payload for the register endpoint. The phone number is sent as digits only."""
        digits = re.sub(r"\D", "", self.phone)
        age: Any = self.age
        if isinstance(age, str) and age.strip().isdigit():
            age = int(age.strip())
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "age": age,
            "gender": self.gender,
            "email": self.email,
            "number": int(digits) if digits else 0,
            "password": self.password,
        }


class ProfileUpdate(WireModel):
    """Partial profile update for PUT /api/users/me."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    number: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[str] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    blood_type: Optional[str] = None

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not re.fullmatch(r"\d+", v.strip()):
            raise ValueError("Phone number may only contain digits")
        return v.strip()

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if parse_timestamp(v) is None:
            raise ValueError("Date of birth must be in YYYY-MM-DD format")
        return v.strip()

    @field_validator("height", "weight", mode="before")
    @classmethod
    def validate_body_metric(cls, v: Any) -> Optional[float]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        number = parse_number(v)
        if number is None:
            raise ValueError("Use digits only for height and weight (a decimal point or comma is allowed)")
        return number

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PersonalInfo(WireModel):
    height: str = ""
    weight: str = ""
    blood_type: str = ""


class HeartHealth(WireModel):
    resting_rate: str = ""
    max_rate: str = ""
    blood_pressure: str = ""
    last_check: str = ""


class DossierMeasurement(WireModel):
    date: str = ""
    time: str = ""
    label: str = ""
    value: str = ""


def _default_dossier_measurements() -> List[DossierMeasurement]:
    return [DossierMeasurement(), DossierMeasurement()]


class DossierData(WireModel):
    """Client-local medical dossier. Every leaf value is a string."""

    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    heart: HeartHealth = Field(default_factory=HeartHealth)
    measurements: List[DossierMeasurement] = Field(default_factory=_default_dossier_measurements)


class SessionResponse(WireModel):
    """Response model for the current session."""

    display_name: str
    age: Optional[int] = None
    profile: Optional[UserProfile] = None


class ActivityViewResponse(WireModel):
    """Response model for the activity log view."""

    day: Optional[str] = None
    slots: List[ActivitySlot] = Field(..., description="Slots for the selected day")
    all_slots: List[ActivitySlot] = Field(..., description="Slots across all loaded measurements")
    activities: List[Activity] = Field(default_factory=list)


class AssignActivityRequest(WireModel):
    activity_id: Optional[int] = Field(None, description="Activity to link, or null to unlink")


class TagRequest(WireModel):
    slot_start_iso: str = Field(..., description="Slot start, UTC ISO 8601")
    label: Optional[str] = Field(None, description="Label to store, or null to remove the tag")

    @field_validator("slot_start_iso")
    @classmethod
    def normalize_slot_start(cls, v: str) -> str:
        """Stored in the same form slots report, so any UTC offset matches."""
        parsed = parse_timestamp(v)
        if parsed is None:
            raise ValueError("Slot start must be an ISO 8601 timestamp")
        return format_utc(parsed)


class DossierResponse(WireModel):
    dossier: DossierData
    profile: Optional[UserProfile] = None


class StatusResponse(BaseModel):
    """Generic acknowledgement."""

    status: str = Field(default="ok", description="Operation status")
