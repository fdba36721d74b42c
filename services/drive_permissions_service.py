from dataclasses import dataclass
from typing import Any, Dict, Optional

from config import config
from utils.errors import ConfigurationError, UpstreamError, ValidationError
from utils.structured_logging import drive_logger

ALLOWED_ROLES = ("reader", "commenter", "writer")


@dataclass(frozen=True)
class PermissionGrant:
    """Outcome of a domain grant. ``already_exists`` is Drive's 409, which is not an error here."""

    file_id: str
    domain: str
    role: str
    status: str  # "created" | "already_exists"
    permission_id: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.status == "created"


class DrivePermissionsService:
    def __init__(self, drive_service, domain: Optional[str] = None, role: Optional[str] = None):
        self.drive_service = drive_service
        self.default_domain = domain or config.DRIVE_PERMISSION_DOMAIN
        self.default_role = role or config.DRIVE_PERMISSION_ROLE

    def build_domain_permission(self, domain: str, role: str) -> Dict[str, Any]:
        return {
            "type": "domain",
            "role": role,
            "domain": domain,
            "allowFileDiscovery": False,
        }

    def grant_domain_access(self, file_id: str, domain: Optional[str] = None,
                            role: Optional[str] = None) -> PermissionGrant:
        """
        Give everyone in ``domain`` ``role`` access to ``file_id`` without making
        it discoverable. Safe to repeat: a 409 from Drive resolves to
        ``status="already_exists"``. No retries.
        """
        domain = (domain or self.default_domain or "").strip()
        if not domain:
            raise ConfigurationError("DRIVE_PERMISSION_DOMAIN is not configured")
        role = (role or self.default_role or "reader").strip().lower()
        if role not in ALLOWED_ROLES:
            raise ValidationError(f"Unsupported permission role: {role}")

        try:
            created = self.drive_service.create_permission(file_id, self.build_domain_permission(domain, role))
        except UpstreamError as exc:
            if exc.status != 409:
                raise
            drive_logger.info(
                action="grant_domain_access",
                status="already_exists",
                message=f"Domain permission for {domain} already present",
                drive_file_id=file_id,
            )
            return PermissionGrant(file_id=file_id, domain=domain, role=role, status="already_exists")

        return PermissionGrant(
            file_id=file_id,
            domain=domain,
            role=role,
            status="created",
            permission_id=created.get("id"),
        )
