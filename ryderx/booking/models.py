from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ApiModel(BaseModel):
    """Base for models exchanged with the reservations API (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, value: str) -> "ReservationStatus":
        """Case-insensitive lookup; the API is not consistent about casing."""
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Unknown reservation status: {value!r}")


ACTIVE_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.ACTIVE,
    ReservationStatus.CONFIRMED,
)

LOCKED_STATUSES = (
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
)


class Location(ApiModel):
    id: Union[int, str]
    name: str
    address: Optional[str] = None
    city: Optional[str] = None


class Car(ApiModel):
    id: Union[int, str]
    make: str = ""
    model: str = ""
    year: Optional[int] = None
    license_plate: Optional[str] = None
    price_per_day: float
    is_available: bool = True
    category: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    seats: Optional[int] = None
    image_url: Optional[str] = None
    location: Optional[str] = None
    location_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model}".strip() or f"Car {self.id}"


class CarFilter(ApiModel):
    """Vehicle search criteria. Unset fields match every car; price bounds are inclusive."""

    location_name: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    category: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    min_seats: Optional[int] = None
    make: Optional[str] = None
    available: Optional[bool] = None


class ReservationHold(ApiModel):
    """A reservation as the API reports it. Status is owned by the server."""

    id: Union[int, str]
    status: ReservationStatus = ReservationStatus.PENDING
    created_at: Optional[datetime] = None
    total_price: float = 0.0
    pickup_at: Optional[datetime] = None
    dropoff_at: Optional[datetime] = None
    car_name: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    user_email: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value):
        if isinstance(value, str):
            return ReservationStatus.parse(value)
        return value

    @field_validator("created_at", "pickup_at", "dropoff_at")
    @classmethod
    def _to_utc(cls, value):
        return as_utc(value)

    @property
    def key(self) -> str:
        """Reservation id as used for countdown records."""
        return str(self.id)

    @property
    def is_pending(self) -> bool:
        return self.status == ReservationStatus.PENDING

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def label(self) -> str:
        return self.car_name or f"Reservation {self.id}"


class AddOns(ApiModel):
    road_care: bool = True
    additional_driver: bool = False
    child_seat: bool = False


class Hirer(ApiModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    country: str = ""
    driver_license_number: str = ""


class ReservationDraft(BaseModel):
    """In-progress booking form state, owned by the wizard until submission."""

    model_config = ConfigDict(validate_assignment=True)

    car: Optional[Car] = None
    pickup_location: str = ""
    dropoff_location: str = ""
    pickup_at: Optional[datetime] = None
    dropoff_at: Optional[datetime] = None
    add_ons: AddOns = Field(default_factory=AddOns)
    hirer: Hirer = Field(default_factory=Hirer)

    @field_validator("pickup_at", "dropoff_at")
    @classmethod
    def _to_utc(cls, value):
        return as_utc(value)


class PriceQuote(BaseModel):
    """Display-only price breakdown. The API computes the authoritative total."""

    days: int
    vehicle_subtotal: float
    road_care: float = 0.0
    additional_driver: float = 0.0
    child_seat: float = 0.0
    total: float


class CheckoutSession(ApiModel):
    url: str
    session_id: Optional[str] = None


class Notice(BaseModel):
    """A dismissible message for the UI layer."""

    level: Literal["info", "warning", "error"] = "info"
    message: str
    reservation_id: Optional[str] = None
