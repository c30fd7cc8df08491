import re
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Role(str, Enum):
    viewer = "viewer"
    entry = "entry"
    admin = "admin"


class Direction(str, Enum):
    inflow = "in"
    outflow = "out"


class LookupKind(str, Enum):
    property_type = "property_type"
    category = "category"
    person = "person"


class ExpiryStatus(str, Enum):
    active = "active"
    expiring = "expiring"
    expired = "expired"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str


class MessageResponse(BaseModel):
    message: str
    id: Optional[int] = None


class LoginRequest(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=6, max_length=200)


class IdentityResponse(BaseModel):
    id: int
    role: Role
    name: str


class AuthResponse(BaseModel):
    message: str
    token: str
    user: IdentityResponse


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(max_length=254)
    password: str = Field(min_length=6, max_length=200)
    role: Role

    @field_validator("username", "name")
    @classmethod
    def strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_RE.match(value):
            raise ValueError("must be a valid email address")
        return value


class UserResponse(BaseModel):
    id: int
    username: str
    name: str
    email: str
    role: Role
    created_at: Optional[str]


class SettingCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: LookupKind

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class SettingResponse(BaseModel):
    id: int
    name: str
    type: LookupKind


class OperationResponse(BaseModel):
    id: int
    date: str
    property_type: Optional[str]
    reference_number: Optional[str]
    amount: float
    category: Optional[str]
    description: Optional[str]
    attachment_path: Optional[str]
    type: Direction
    created_by: Optional[int]
    created_by_name: Optional[str]
    created_at: Optional[str]


class TransferResponse(BaseModel):
    id: int
    date: str
    person_name: str
    amount: float
    attachment_path: Optional[str]
    created_by: Optional[int]
    created_by_name: Optional[str]
    created_at: Optional[str]


class PlatformCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=200)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("category")
    @classmethod
    def empty_category_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ServiceResponse(BaseModel):
    id: int
    platform_id: int
    name: str
    start_date: Optional[str]
    end_date: Optional[str]
    attachment_path: Optional[str]
    created_by: Optional[int]
    created_at: Optional[str]
    days_remaining: Optional[int] = None
    status: Optional[ExpiryStatus] = None


class PlatformResponse(BaseModel):
    id: int
    name: str
    category: Optional[str]
    created_by: Optional[int]
    created_by_name: Optional[str]
    created_at: Optional[str]
    services: list[ServiceResponse] = Field(default_factory=list)


class CategoryTotal(BaseModel):
    category: Optional[str]
    total: float


class PersonTotal(BaseModel):
    person_name: Optional[str]
    total: float


class PropertyTotal(BaseModel):
    property_type: str
    total: float


class RecentActivity(BaseModel):
    id: int
    date: str
    amount: float
    type: Direction
    details: Optional[str]
    origin: Literal["op", "tra"]


class StatsResponse(BaseModel):
    total_in: float
    total_out: float
    total_transfers: float
    balance: float
    categories: list[CategoryTotal]
    persons: list[PersonTotal]
    properties: list[PropertyTotal]
    recent: list[RecentActivity]


class BackupRunResponse(BaseModel):
    message: str
    file: str
    recipient: str
