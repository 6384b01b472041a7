from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from fleet_rbac.domain.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from fleet_rbac.domain.models import (
    Device,
    DeviceCreate,
    DeviceStatus,
    Vehicle,
    VehicleCreate,
    VehicleStatus,
    now_utc,
)
from fleet_rbac.domain.permissions import PermissionCode
from fleet_rbac.services.base import AdminService

logger = logging.getLogger(__name__)


class FleetService(AdminService):
    """Device and vehicle registry, gated per tenant."""

    def _get_device(self, session: Session, device_id: str) -> Device:
        device = session.get(Device, device_id)
        if device is None:
            raise NotFoundError(f"Device not found with ID: {device_id}")
        return device

    def _get_vehicle(self, session: Session, vehicle_id: str) -> Vehicle:
        vehicle = session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError(f"Vehicle not found with ID: {vehicle_id}")
        return vehicle

    def register_device(self, actor_id: str, payload: DeviceCreate) -> Device:
        self._require(
            actor_id,
            PermissionCode.DEVICE_REGISTER,
            payload.tenant_id,
            "Insufficient permissions to register device",
        )
        imei = payload.imei.strip().upper()
        with self._session() as session:
            if session.exec(select(Device.id).where(Device.imei == imei)).first() is not None:
                raise ConflictError(f"Device with IMEI already exists: {imei}")
            device = Device(
                imei=imei,
                device_model=payload.device_model,
                tenant_id=payload.tenant_id,
                created_by=actor_id,
            )
            session.add(device)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("device imei already exists") from exc
            session.refresh(device)
            logger.info("device %s registered by %s in tenant %s", imei, actor_id, payload.tenant_id)
            return device

    def get_device(self, actor_id: str, device_id: str) -> Device:
        with self._session() as session:
            device = self._get_device(session, device_id)
        self._require(actor_id, PermissionCode.DEVICE_READ, device.tenant_id)
        if not self.authz.can_access_tenant(actor_id, device.tenant_id):
            raise ForbiddenError(f"Access denied to device: {device_id}")
        return device

    def update_device_status(self, actor_id: str, device_id: str, status: DeviceStatus) -> Device:
        with self._session() as session:
            device = self._get_device(session, device_id)
            self._require(actor_id, PermissionCode.DEVICE_UPDATE, device.tenant_id)
            if device.status == DeviceStatus.DECOMMISSIONED:
                raise InvalidStateError(f"Device is decommissioned: {device.imei}")
            device.status = status
            device.updated_at = now_utc()
            session.add(device)
            session.commit()
            session.refresh(device)
            logger.info("device %s moved to %s by %s", device.imei, status, actor_id)
            return device

    def decommission_device(self, actor_id: str, device_id: str) -> None:
        with self._session() as session:
            device = self._get_device(session, device_id)
            self._require(
                actor_id,
                PermissionCode.DEVICE_DELETE,
                device.tenant_id,
                "Insufficient permissions to delete device",
            )
            device.status = DeviceStatus.DECOMMISSIONED
            device.updated_at = now_utc()
            session.add(device)
            session.commit()
            logger.info("device %s decommissioned by %s", device.imei, actor_id)

    def create_vehicle(self, actor_id: str, payload: VehicleCreate) -> Vehicle:
        self._require(
            actor_id,
            PermissionCode.VEHICLE_CREATE,
            payload.tenant_id,
            "Insufficient permissions to create vehicle",
        )
        plate = payload.license_plate.strip().upper()
        with self._session() as session:
            if session.exec(select(Vehicle.id).where(Vehicle.license_plate == plate)).first() is not None:
                raise ConflictError(f"Vehicle with license plate already exists: {plate}")
            vehicle = Vehicle(
                license_plate=plate,
                vehicle_type=payload.vehicle_type,
                tenant_id=payload.tenant_id,
                fleet_id=payload.fleet_id,
                created_by=actor_id,
            )
            session.add(vehicle)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("vehicle license plate already exists") from exc
            session.refresh(vehicle)
            logger.info("vehicle %s created by %s in tenant %s", plate, actor_id, payload.tenant_id)
            return vehicle

    def get_vehicle(self, actor_id: str, vehicle_id: str) -> Vehicle:
        with self._session() as session:
            vehicle = self._get_vehicle(session, vehicle_id)
        self._require(actor_id, PermissionCode.VEHICLE_READ, vehicle.tenant_id)
        if not self.authz.can_access_tenant(actor_id, vehicle.tenant_id):
            raise ForbiddenError(f"Access denied to vehicle: {vehicle_id}")
        return vehicle

    def update_vehicle_status(self, actor_id: str, vehicle_id: str, status: VehicleStatus) -> Vehicle:
        with self._session() as session:
            vehicle = self._get_vehicle(session, vehicle_id)
            self._require(actor_id, PermissionCode.VEHICLE_UPDATE, vehicle.tenant_id)
            if vehicle.status == VehicleStatus.RETIRED:
                raise InvalidStateError(f"Vehicle is retired: {vehicle.license_plate}")
            vehicle.status = status
            vehicle.updated_at = now_utc()
            session.add(vehicle)
            session.commit()
            session.refresh(vehicle)
            logger.info("vehicle %s moved to %s by %s", vehicle.license_plate, status, actor_id)
            return vehicle

    def retire_vehicle(self, actor_id: str, vehicle_id: str) -> None:
        with self._session() as session:
            vehicle = self._get_vehicle(session, vehicle_id)
            self._require(
                actor_id,
                PermissionCode.VEHICLE_DELETE,
                vehicle.tenant_id,
                "Insufficient permissions to delete vehicle",
            )
            vehicle.status = VehicleStatus.RETIRED
            vehicle.updated_at = now_utc()
            session.add(vehicle)
            session.commit()
            logger.info("vehicle %s retired by %s", vehicle.license_plate, actor_id)
