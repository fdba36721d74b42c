"""
Structured JSON logging for Drive document operations.
Provides consistent logging format with required fields:
- service, action, status, drive_file_id, entity_type, entity_id
- error_type, error_message (in case of failure)
- Masks sensitive data (partial email addresses)
"""

import json
import logging
import re
from datetime import datetime
from typing import Optional

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


def mask_email(email: Optional[str]) -> Optional[str]:
    """
    Partially mask an email address for privacy.
    Example: john.doe@example.com -> j***@example.com
    """
    if not email or "@" not in email:
        return email

    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def mask_emails_in_text(text: str) -> str:
    """Find and mask all email addresses in a text string."""
    return EMAIL_PATTERN.sub(lambda match: mask_email(match.group(0)), text)


class StructuredLogger:
    """
    Structured logger for Drive operations.
    Outputs JSON-formatted logs with consistent fields.
    """

    def __init__(self, service: str = "drive", logger_name: str = "erp_drive.drive"):
        self.service = service
        self.logger = logging.getLogger(logger_name)

    def _log(
        self,
        level: int,
        action: str,
        status: str,
        message: str,
        drive_file_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        mask_sensitive: bool = True,
        **extra_fields,
    ):
        log_data = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "service": self.service,
            "action": action,
            "status": status,
            "message": mask_emails_in_text(message) if mask_sensitive else message,
        }

        if drive_file_id:
            log_data["drive_file_id"] = drive_file_id
        if entity_type:
            log_data["entity_type"] = entity_type
        if entity_id:
            log_data["entity_id"] = entity_id
        if error_type:
            log_data["error_type"] = error_type
        if error_message:
            log_data["error_message"] = mask_emails_in_text(error_message) if mask_sensitive else error_message

        for key, value in extra_fields.items():
            if isinstance(value, str) and mask_sensitive:
                log_data[key] = mask_emails_in_text(value)
            else:
                log_data[key] = value

        self.logger.log(level, json.dumps(log_data, default=str))

    def info(
        self,
        action: str,
        status: str = "success",
        message: str = "",
        drive_file_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **extra_fields,
    ):
        """
        Log informational message.

        Args:
            action: The operation being performed (e.g., "upload", "ensure_folder")
            status: Status of the operation (default: "success")
            message: Human-readable message
            drive_file_id: Google Drive file or folder ID
            entity_type: Type of entity (e.g., "user_document", "session")
            entity_id: ID of the entity
            **extra_fields: Additional fields to include in the log
        """
        self._log(
            logging.INFO,
            action=action,
            status=status,
            message=message,
            drive_file_id=drive_file_id,
            entity_type=entity_type,
            entity_id=entity_id,
            **extra_fields,
        )

    def warning(
        self,
        action: str,
        status: str = "warning",
        message: str = "",
        drive_file_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        error: Optional[Exception] = None,
        **extra_fields,
    ):
        """Log warning message, optionally attaching the exception that caused it."""
        self._log(
            logging.WARNING,
            action=action,
            status=status,
            message=message,
            drive_file_id=drive_file_id,
            entity_type=entity_type,
            entity_id=entity_id,
            error_type=type(error).__name__ if error else None,
            error_message=str(error) if error else None,
            **extra_fields,
        )

    def error(
        self,
        action: str,
        message: str,
        error: Optional[Exception] = None,
        drive_file_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **extra_fields,
    ):
        """
        Log error message.

        Args:
            action: The operation that failed
            message: Human-readable error message
            error: Exception object (if available)
            drive_file_id: Google Drive file or folder ID
            entity_type: Type of entity
            entity_id: ID of the entity
            **extra_fields: Additional fields
        """
        self._log(
            logging.ERROR,
            action=action,
            status="error",
            message=message,
            drive_file_id=drive_file_id,
            entity_type=entity_type,
            entity_id=entity_id,
            error_type=type(error).__name__ if error else None,
            error_message=str(error) if error else None,
            **extra_fields,
        )


drive_logger = StructuredLogger(service="drive", logger_name="erp_drive.drive")
documents_logger = StructuredLogger(service="documents", logger_name="erp_drive.documents")
