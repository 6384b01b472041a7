from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from fleet_rbac.domain.permissions import PermissionCategory


def now_utc() -> datetime:
    return datetime.now(UTC)


class RoleScope(StrEnum):
    GLOBAL = "GLOBAL"
    TENANT = "TENANT"
    FLEET = "FLEET"
    REGIONAL = "REGIONAL"


class DeviceStatus(StrEnum):
    REGISTERED = "REGISTERED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    DECOMMISSIONED = "DECOMMISSIONED"


class VehicleType(StrEnum):
    CAR = "CAR"
    TRUCK = "TRUCK"
    VAN = "VAN"
    MOTORCYCLE = "MOTORCYCLE"
    BUS = "BUS"
    TRAILER = "TRAILER"


class VehicleStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str | None = Field(default=None, index=True)
    tenant_id: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    tenant_id: str | None = Field(default=None, index=True)
    scope: RoleScope = Field(default=RoleScope.TENANT, index=True)
    is_active: bool = Field(default=True, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    description: str | None = None
    category: PermissionCategory = Field(index=True)
    is_active: bool = Field(default=True, index=True)
    requires_scope: bool = Field(default=False)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    role_id: str = Field(foreign_key="roles.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"

    role_id: str = Field(foreign_key="roles.id", primary_key=True)
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class Device(SQLModel, table=True):
    __tablename__ = "devices"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    imei: str = Field(index=True, unique=True)
    device_model: str | None = None
    tenant_id: str = Field(index=True)
    status: DeviceStatus = Field(default=DeviceStatus.REGISTERED, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Vehicle(SQLModel, table=True):
    __tablename__ = "vehicles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    license_plate: str = Field(index=True, unique=True)
    vehicle_type: VehicleType
    tenant_id: str = Field(index=True)
    fleet_id: str | None = Field(default=None, index=True)
    status: VehicleStatus = Field(default=VehicleStatus.ACTIVE, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class UserDevice(SQLModel, table=True):
    __tablename__ = "user_devices"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    device_id: str = Field(foreign_key="devices.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class UserVehicle(SQLModel, table=True):
    __tablename__ = "user_vehicles"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    vehicle_id: str = Field(foreign_key="vehicles.id", primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class UserCreate(BaseModel):
    username: str = PydanticField(min_length=1, max_length=100)
    email: str | None = None


class UserUpdate(BaseModel):
    email: str | None = None
    is_active: bool | None = None


class RoleCreate(BaseModel):
    name: str = PydanticField(min_length=2, max_length=100)
    description: str | None = PydanticField(default=None, max_length=500)
    tenant_id: str | None = None
    scope: RoleScope = RoleScope.TENANT
    permission_ids: list[str] = PydanticField(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=2, max_length=100)
    description: str | None = PydanticField(default=None, max_length=500)
    tenant_id: str | None = None
    scope: RoleScope | None = None
    permission_ids: list[str] | None = None


class PermissionCreate(BaseModel):
    code: str = PydanticField(min_length=1, max_length=100)
    name: str = PydanticField(min_length=1, max_length=200)
    description: str | None = PydanticField(default=None, max_length=500)
    category: PermissionCategory
    requires_scope: bool = False


class PermissionUpdate(BaseModel):
    code: str = PydanticField(min_length=1, max_length=100)
    name: str | None = PydanticField(default=None, min_length=1, max_length=200)
    description: str | None = PydanticField(default=None, max_length=500)
    category: PermissionCategory | None = None
    requires_scope: bool | None = None


class DeviceCreate(BaseModel):
    imei: str = PydanticField(min_length=1, max_length=20)
    device_model: str | None = None
    tenant_id: str


class VehicleCreate(BaseModel):
    license_plate: str = PydanticField(min_length=1, max_length=20)
    vehicle_type: VehicleType
    tenant_id: str
    fleet_id: str | None = None


class Principal(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    tenant_id: str | None = None
