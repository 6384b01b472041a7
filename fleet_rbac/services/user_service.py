from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from fleet_rbac.domain.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from fleet_rbac.domain.models import (
    Device,
    DeviceStatus,
    Role,
    User,
    UserCreate,
    UserDevice,
    UserRole,
    UserUpdate,
    UserVehicle,
    Vehicle,
    VehicleStatus,
    now_utc,
)
from fleet_rbac.domain.permissions import PermissionCode
from fleet_rbac.services.base import AdminService
from fleet_rbac.services.escalation_guard import ensure_can_assign_role, ensure_can_assign_roles

logger = logging.getLogger(__name__)


class UserService(AdminService):
    MAX_USERS_PER_DEVICE = 10
    MAX_USERS_PER_VEHICLE = 5

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found with ID: {user_id}")
        return user

    def _email_taken(self, session: Session, email: str, exclude_user_id: str | None = None) -> bool:
        statement = select(User.id).where(User.email == email)
        if exclude_user_id is not None:
            statement = statement.where(User.id != exclude_user_id)
        return session.exec(statement).first() is not None

    def create_user(self, actor_id: str, tenant_id: str | None, payload: UserCreate) -> User:
        self._require_tenant_target(
            actor_id,
            PermissionCode.USER_CREATE,
            tenant_id,
            "Insufficient permissions to create user",
        )
        username = payload.username.strip()
        email = payload.email.strip() if payload.email and payload.email.strip() else None
        with self._session() as session:
            if session.exec(select(User.id).where(User.username == username)).first() is not None:
                raise ConflictError(f"User with username already exists: {username}")
            if email is not None and self._email_taken(session, email):
                raise ConflictError(f"User with email already exists: {email}")
            user = User(username=username, email=email, tenant_id=tenant_id, created_by=actor_id)
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
            logger.info("user %s created by %s in tenant %s", user.id, actor_id, tenant_id)
            return user

    def get_user(self, actor_id: str, user_id: str) -> User:
        with self._session() as session:
            user = self._get_user(session, user_id)
        self._require(actor_id, PermissionCode.USER_READ, user.tenant_id, "Insufficient permissions to read user")
        if not self.authz.can_access_tenant(actor_id, user.tenant_id):
            raise ForbiddenError(f"Access denied to user: {user_id}")
        return user

    def list_users(self, actor_id: str, tenant_id: str | None = None) -> list[User]:
        with self._session() as session:
            actor = self._get_actor(session, actor_id)
        target_tenant_id = tenant_id if tenant_id is not None else actor.tenant_id
        self._require(actor_id, PermissionCode.USER_READ, target_tenant_id, "Insufficient permissions to read user")

        is_super_admin = self.authz.is_super_admin(actor_id)
        if target_tenant_id is None and not is_super_admin:
            raise ForbiddenError("Access denied to global users")
        if target_tenant_id is not None and not self.authz.can_access_tenant(actor_id, target_tenant_id):
            raise ForbiddenError(f"Access denied to tenant: {target_tenant_id}")

        with self._session() as session:
            statement = select(User)
            if target_tenant_id is not None:
                statement = statement.where(User.tenant_id == target_tenant_id)
            return list(session.exec(statement.order_by(col(User.username))).all())

    def update_user(self, actor_id: str, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = self._get_user(session, user_id)
            self._require_tenant_target(
                actor_id,
                PermissionCode.USER_UPDATE,
                user.tenant_id,
                "Insufficient permissions to update user",
            )
            if not self.authz.can_manage_user(actor_id, user_id):
                raise ForbiddenError(f"Cannot manage user: {user_id}")
            if payload.is_active is not None and payload.is_active != user.is_active:
                self._require_tenant_target(actor_id, PermissionCode.USER_ACTIVATE, user.tenant_id)

            if payload.email is not None:
                email = payload.email.strip() or None
                if email is not None and email != user.email and self._email_taken(session, email, user_id):
                    raise ConflictError(f"Email already exists: {email}")
                user.email = email
            if payload.is_active is not None:
                user.is_active = payload.is_active
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            logger.info("user %s updated by %s", user_id, actor_id)
            return user

    def deactivate_user(self, actor_id: str, user_id: str) -> None:
        with self._session() as session:
            user = self._get_user(session, user_id)
            if user_id == actor_id:
                raise InvalidStateError("Cannot delete your own account")
            self._require_tenant_target(
                actor_id,
                PermissionCode.USER_DELETE,
                user.tenant_id,
                "Insufficient permissions to delete user",
            )
            user.is_active = False
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            logger.info("user %s deactivated by %s", user_id, actor_id)

    def assign_roles(self, actor_id: str, user_id: str, role_ids: list[str]) -> list[str]:
        with self._session() as session:
            user = self._get_user(session, user_id)
            self._require_tenant_target(
                actor_id,
                PermissionCode.ROLE_ASSIGN,
                user.tenant_id,
                "Insufficient permissions to assign roles",
            )
            actor = self._get_actor(session, actor_id)

            snapshots = []
            for role_id in sorted(set(role_ids)):
                role = session.get(Role, role_id)
                if role is None:
                    raise NotFoundError(f"Role not found with ID: {role_id}")
                if not role.is_active:
                    raise InvalidStateError(f"Cannot assign inactive role: {role.name}")
                snapshot = self._role_snapshot(session, role)
                ensure_can_assign_role(self.authz, actor_id, actor.tenant_id, snapshot, user.tenant_id)
                snapshots.append(snapshot)
            ensure_can_assign_roles(self.authz, actor_id, snapshots)

            self._replace_links(session, UserRole, "role_id", user_id, [snapshot.id for snapshot in snapshots])
            session.commit()
            logger.info("user %s assigned %d roles by %s", user_id, len(snapshots), actor_id)
            return [snapshot.id for snapshot in snapshots]

    def list_user_role_ids(self, user_id: str) -> list[str]:
        with self._session() as session:
            return sorted(session.exec(select(UserRole.role_id).where(UserRole.user_id == user_id)).all())

    def _replace_links(
        self,
        session: Session,
        link: type[UserRole] | type[UserDevice] | type[UserVehicle],
        column: str,
        user_id: str,
        target_ids: list[str],
    ) -> None:
        wanted = set(target_ids)
        existing = list(session.exec(select(link).where(link.user_id == user_id)).all())
        for row in existing:
            if getattr(row, column) not in wanted:
                session.delete(row)
        kept = {getattr(row, column) for row in existing}
        for target_id in sorted(wanted - kept):
            session.add(link(user_id=user_id, **{column: target_id}))

    def _linked_user_count(
        self,
        session: Session,
        link: type[UserDevice] | type[UserVehicle],
        column: str,
        target_id: str,
        user_id: str,
    ) -> int:
        target_col = getattr(link, column)
        statement = (
            select(func.count())
            .select_from(link)
            .where(target_col == target_id)
            .where(link.user_id != user_id)
        )
        return int(session.exec(statement).one())

    def assign_devices(self, actor_id: str, user_id: str, device_ids: list[str]) -> list[str]:
        with self._session() as session:
            user = self._get_user(session, user_id)
            self._require_tenant_target(
                actor_id,
                PermissionCode.DEVICE_ASSIGN,
                user.tenant_id,
                "Insufficient permissions to assign devices",
            )

            devices: list[Device] = []
            for device_id in sorted(set(device_ids)):
                device = session.get(Device, device_id)
                if device is None:
                    raise NotFoundError(f"Device not found with ID: {device_id}")
                if device.tenant_id != user.tenant_id:
                    raise ForbiddenError("Device does not belong to the same tenant")
                if device.status == DeviceStatus.DECOMMISSIONED:
                    raise InvalidStateError(f"Cannot assign decommissioned device: {device.imei}")
                if self._linked_user_count(session, UserDevice, "device_id", device.id, user_id) >= self.MAX_USERS_PER_DEVICE:
                    raise InvalidStateError(f"Device {device.imei} has reached maximum user assignments")
                devices.append(device)

            self._replace_links(session, UserDevice, "device_id", user_id, [device.id for device in devices])
            session.commit()
            logger.info("user %s assigned %d devices by %s", user_id, len(devices), actor_id)
            return [device.id for device in devices]

    def assign_vehicles(self, actor_id: str, user_id: str, vehicle_ids: list[str]) -> list[str]:
        with self._session() as session:
            user = self._get_user(session, user_id)
            self._require_tenant_target(
                actor_id,
                PermissionCode.VEHICLE_ASSIGN_DEVICE,
                user.tenant_id,
                "Insufficient permissions to assign vehicles",
            )

            vehicles: list[Vehicle] = []
            for vehicle_id in sorted(set(vehicle_ids)):
                vehicle = session.get(Vehicle, vehicle_id)
                if vehicle is None:
                    raise NotFoundError(f"Vehicle not found with ID: {vehicle_id}")
                if vehicle.tenant_id != user.tenant_id:
                    raise ForbiddenError("Vehicle does not belong to the same tenant")
                if vehicle.status == VehicleStatus.RETIRED:
                    raise InvalidStateError(f"Cannot assign retired vehicle: {vehicle.license_plate}")
                linked = self._linked_user_count(session, UserVehicle, "vehicle_id", vehicle.id, user_id)
                if linked >= self.MAX_USERS_PER_VEHICLE:
                    raise InvalidStateError(
                        f"Vehicle {vehicle.license_plate} has reached maximum user assignments"
                    )
                vehicles.append(vehicle)

            self._replace_links(session, UserVehicle, "vehicle_id", user_id, [vehicle.id for vehicle in vehicles])
            session.commit()
            logger.info("user %s assigned %d vehicles by %s", user_id, len(vehicles), actor_id)
            return [vehicle.id for vehicle in vehicles]
