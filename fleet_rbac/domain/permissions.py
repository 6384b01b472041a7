from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class PermissionCategory(StrEnum):
    SYSTEM_ADMINISTRATION = "SYSTEM_ADMINISTRATION"
    USER_MANAGEMENT = "USER_MANAGEMENT"
    ROLE_MANAGEMENT = "ROLE_MANAGEMENT"
    DEVICE_MANAGEMENT = "DEVICE_MANAGEMENT"
    VEHICLE_MANAGEMENT = "VEHICLE_MANAGEMENT"
    LOCATION_TRACKING = "LOCATION_TRACKING"
    ALERTS_NOTIFICATIONS = "ALERTS_NOTIFICATIONS"
    REPORTS_ANALYTICS = "REPORTS_ANALYTICS"
    SECURITY_COMPLIANCE = "SECURITY_COMPLIANCE"


class PermissionCode(StrEnum):
    """Every permission code the platform knows about.

    ``SUPER_ADMIN`` is the one distinguished member: holding it grants every
    check, and only a holder may hand it on to someone else.
    """

    SUPER_ADMIN = "SUPER_ADMIN"
    SYSTEM_MAINTENANCE = "SYSTEM_MAINTENANCE"
    MULTI_TENANT_MANAGE = "MULTI_TENANT_MANAGE"
    SYSTEM_CONFIG = "SYSTEM_CONFIG"

    USER_CREATE = "USER_CREATE"
    USER_READ = "USER_READ"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    USER_RESET_PASSWORD = "USER_RESET_PASSWORD"
    USER_ACTIVATE = "USER_ACTIVATE"

    ROLE_CREATE = "ROLE_CREATE"
    ROLE_READ = "ROLE_READ"
    ROLE_UPDATE = "ROLE_UPDATE"
    ROLE_DELETE = "ROLE_DELETE"
    ROLE_ASSIGN = "ROLE_ASSIGN"
    PERMISSION_READ = "PERMISSION_READ"

    DEVICE_READ = "DEVICE_READ"
    DEVICE_REGISTER = "DEVICE_REGISTER"
    DEVICE_UPDATE = "DEVICE_UPDATE"
    DEVICE_DELETE = "DEVICE_DELETE"
    DEVICE_ASSIGN = "DEVICE_ASSIGN"
    DEVICE_ACTIVATE = "DEVICE_ACTIVATE"
    DEVICE_REMOTE_CONFIG = "DEVICE_REMOTE_CONFIG"
    DEVICE_BULK_OPERATIONS = "DEVICE_BULK_OPERATIONS"

    VEHICLE_READ = "VEHICLE_READ"
    VEHICLE_CREATE = "VEHICLE_CREATE"
    VEHICLE_UPDATE = "VEHICLE_UPDATE"
    VEHICLE_DELETE = "VEHICLE_DELETE"
    VEHICLE_ASSIGN_DEVICE = "VEHICLE_ASSIGN_DEVICE"
    FLEET_MANAGE = "FLEET_MANAGE"
    VEHICLE_MAINTENANCE = "VEHICLE_MAINTENANCE"

    VIEW_LOCATION_LIVE = "VIEW_LOCATION_LIVE"
    VIEW_LOCATION_HISTORY = "VIEW_LOCATION_HISTORY"
    EXPORT_LOCATION = "EXPORT_LOCATION"
    GEOFENCE_MANAGE = "GEOFENCE_MANAGE"
    ROUTE_PLANNING = "ROUTE_PLANNING"
    PLAYBACK_HISTORY = "PLAYBACK_HISTORY"

    ALERT_READ = "ALERT_READ"
    ALERT_MANAGE = "ALERT_MANAGE"
    ALERT_ACKNOWLEDGE = "ALERT_ACKNOWLEDGE"
    NOTIFICATION_SEND = "NOTIFICATION_SEND"
    EMERGENCY_ALERT = "EMERGENCY_ALERT"

    REPORT_VIEW = "REPORT_VIEW"
    REPORT_GENERATE = "REPORT_GENERATE"
    REPORT_SCHEDULE = "REPORT_SCHEDULE"
    ANALYTICS_ACCESS = "ANALYTICS_ACCESS"
    DATA_EXPORT = "DATA_EXPORT"

    AUDIT_READ = "AUDIT_READ"
    SECURITY_CONFIG = "SECURITY_CONFIG"
    COMPLIANCE_MANAGE = "COMPLIANCE_MANAGE"
    BACKUP_RESTORE = "BACKUP_RESTORE"
    API_ACCESS = "API_ACCESS"


SUPER_ADMIN = PermissionCode.SUPER_ADMIN


@dataclass(frozen=True)
class PermissionDefinition:
    code: PermissionCode
    name: str
    description: str
    category: PermissionCategory
    requires_scope: bool = True


def _defs(category: PermissionCategory, *rows: tuple[PermissionCode, str, str]) -> list[PermissionDefinition]:
    return [PermissionDefinition(code=code, name=name, description=desc, category=category) for code, name, desc in rows]


P = PermissionCode

PERMISSION_CATALOG: tuple[PermissionDefinition, ...] = (
    PermissionDefinition(
        code=P.SUPER_ADMIN,
        name="Super Administrator Access",
        description="Complete system access with all permissions",
        category=PermissionCategory.SYSTEM_ADMINISTRATION,
        requires_scope=False,
    ),
    *_defs(
        PermissionCategory.SYSTEM_ADMINISTRATION,
        (P.SYSTEM_MAINTENANCE, "System Maintenance", "Core system operations and maintenance tasks"),
        (P.MULTI_TENANT_MANAGE, "Multi-Tenant Management", "Cross-tenant operations and global management"),
        (P.SYSTEM_CONFIG, "System Configuration", "Modify global system settings and parameters"),
    ),
    *_defs(
        PermissionCategory.USER_MANAGEMENT,
        (P.USER_CREATE, "Create User", "Create new user accounts"),
        (P.USER_READ, "View Users", "View user information and profiles"),
        (P.USER_UPDATE, "Update User", "Modify user information and settings"),
        (P.USER_DELETE, "Delete User", "Remove user accounts from system"),
        (P.USER_RESET_PASSWORD, "Reset Password", "Reset user passwords"),
        (P.USER_ACTIVATE, "Activate/Deactivate Users", "Enable or disable user accounts"),
    ),
    *_defs(
        PermissionCategory.ROLE_MANAGEMENT,
        (P.ROLE_CREATE, "Create Role", "Create new roles and permissions"),
        (P.ROLE_READ, "View Roles", "View role definitions and permissions"),
        (P.ROLE_UPDATE, "Update Role", "Modify role permissions and settings"),
        (P.ROLE_DELETE, "Delete Role", "Remove roles from system"),
        (P.ROLE_ASSIGN, "Assign Roles", "Assign roles to users"),
        (P.PERMISSION_READ, "View Permissions", "View the permission catalog"),
    ),
    *_defs(
        PermissionCategory.DEVICE_MANAGEMENT,
        (P.DEVICE_READ, "View Devices", "View device information and status"),
        (P.DEVICE_REGISTER, "Register Device", "Add new tracking devices"),
        (P.DEVICE_UPDATE, "Update Device", "Modify device settings and configuration"),
        (P.DEVICE_DELETE, "Delete Device", "Remove devices from system"),
        (P.DEVICE_ASSIGN, "Assign Device", "Assign devices to vehicles or users"),
        (P.DEVICE_ACTIVATE, "Activate Device", "Enable or disable device functionality"),
        (P.DEVICE_REMOTE_CONFIG, "Remote Configuration", "Push configuration updates to devices"),
        (P.DEVICE_BULK_OPERATIONS, "Bulk Device Operations", "Perform mass operations on multiple devices"),
    ),
    *_defs(
        PermissionCategory.VEHICLE_MANAGEMENT,
        (P.VEHICLE_READ, "View Vehicles", "View vehicle details and information"),
        (P.VEHICLE_CREATE, "Create Vehicle", "Add new vehicles to fleet"),
        (P.VEHICLE_UPDATE, "Update Vehicle", "Modify vehicle information and settings"),
        (P.VEHICLE_DELETE, "Delete Vehicle", "Remove vehicles from fleet"),
        (P.VEHICLE_ASSIGN_DEVICE, "Assign Device to Vehicle", "Connect tracking devices to vehicles"),
        (P.FLEET_MANAGE, "Fleet Management", "Organize and manage vehicle groups"),
        (P.VEHICLE_MAINTENANCE, "Vehicle Maintenance", "Track and schedule vehicle maintenance"),
    ),
    *_defs(
        PermissionCategory.LOCATION_TRACKING,
        (P.VIEW_LOCATION_LIVE, "Live Location Tracking", "View real-time vehicle locations"),
        (P.VIEW_LOCATION_HISTORY, "Location History", "Access historical tracking data"),
        (P.EXPORT_LOCATION, "Export Location Data", "Download and export location information"),
        (P.GEOFENCE_MANAGE, "Geofence Management", "Create and manage geographic boundaries"),
        (P.ROUTE_PLANNING, "Route Planning", "Create and optimize vehicle routes"),
        (P.PLAYBACK_HISTORY, "Route Playback", "Replay historical vehicle movements"),
    ),
    *_defs(
        PermissionCategory.ALERTS_NOTIFICATIONS,
        (P.ALERT_READ, "View Alerts", "View system alerts and notifications"),
        (P.ALERT_MANAGE, "Manage Alerts", "Create and modify alert rules"),
        (P.ALERT_ACKNOWLEDGE, "Acknowledge Alerts", "Mark alerts as acknowledged"),
        (P.NOTIFICATION_SEND, "Send Notifications", "Send messages and notifications"),
        (P.EMERGENCY_ALERT, "Emergency Alerts", "Handle emergency situations and panic buttons"),
    ),
    *_defs(
        PermissionCategory.REPORTS_ANALYTICS,
        (P.REPORT_VIEW, "View Reports", "Access standard system reports"),
        (P.REPORT_GENERATE, "Generate Reports", "Create custom reports and analytics"),
        (P.REPORT_SCHEDULE, "Schedule Reports", "Set up automated report generation"),
        (P.ANALYTICS_ACCESS, "Analytics Dashboard", "Access advanced analytics and KPIs"),
        (P.DATA_EXPORT, "Data Export", "Export data in various formats"),
    ),
    *_defs(
        PermissionCategory.SECURITY_COMPLIANCE,
        (P.AUDIT_READ, "View Audit Logs", "Access system audit trails"),
        (P.SECURITY_CONFIG, "Security Configuration", "Modify security settings"),
        (P.COMPLIANCE_MANAGE, "Compliance Management", "Handle regulatory compliance"),
        (P.BACKUP_RESTORE, "Backup & Restore", "Manage data backup and recovery"),
        (P.API_ACCESS, "API Access", "Access to system APIs"),
    ),
)


def normalize_code(code: str | PermissionCode | None) -> str | None:
    if code is None:
        return None
    normalized = str(code).strip().upper()
    return normalized or None
