"""Prometheus metrics for Google API traffic."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

DRIVE_REQUESTS = Counter(
    "erp_drive_api_requests_total",
    "Google Drive API calls by operation and outcome",
    ["operation", "outcome"],
)

DRIVE_REQUEST_LATENCY = Histogram(
    "erp_drive_api_request_seconds",
    "Google Drive API call latency",
    ["operation"],
)

TOKEN_REFRESHES = Counter(
    "erp_drive_token_refresh_total",
    "Service-account access token refreshes by outcome",
    ["outcome"],
)

DOCUMENT_OPERATIONS = Counter(
    "erp_drive_document_operations_total",
    "Document lifecycle operations by document type, action and outcome",
    ["document_type", "action", "outcome"],
)

__all__ = [
    "CONTENT_TYPE_LATEST",
    "REGISTRY",
    "DRIVE_REQUESTS",
    "DRIVE_REQUEST_LATENCY",
    "TOKEN_REFRESHES",
    "DOCUMENT_OPERATIONS",
    "generate_latest",
]
