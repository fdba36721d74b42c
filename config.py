import os
from typing import List


def normalize_cors_origins(origins_str: str) -> List[str]:
    """
    Normalize a comma-separated string of CORS origins.

    Handles:
    - Trim whitespace from each origin
    - Remove surrounding quotes (" and ')
    - Remove trailing slashes (/)
    - Filter out empty entries

    Args:
        origins_str: Comma-separated string of origins

    Returns:
        List of normalized, non-empty origins
    """
    if not origins_str:
        return []

    normalized = []
    for origin in origins_str.split(","):
        origin = origin.strip()

        if (origin.startswith('"') and origin.endswith('"')) or \
           (origin.startswith("'") and origin.endswith("'")):
            origin = origin[1:-1]

        origin = origin.strip().rstrip("/")

        if origin:
            normalized.append(origin)

    return normalized


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # --- DATABASE ---
    DATABASE_URL = os.getenv("DATABASE_URL")

    # --- GOOGLE SERVICE ACCOUNT ---
    # Either a full service-account JSON document (inline or a path to the file)
    # or the client e-mail + private key pair.
    GOOGLE_SERVICE_ACCOUNT_JSON = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    GOOGLE_DRIVE_CLIENT_EMAIL = os.getenv("GOOGLE_DRIVE_CLIENT_EMAIL")
    GOOGLE_DRIVE_PRIVATE_KEY = os.getenv("GOOGLE_DRIVE_PRIVATE_KEY")
    # Workspace user the service account acts as (domain-wide delegation).
    GOOGLE_IMPERSONATE_EMAIL = os.getenv("GOOGLE_IMPERSONATE_EMAIL", None)
    GOOGLE_TOKEN_TIMEOUT = float(os.getenv("GOOGLE_TOKEN_TIMEOUT", "10"))

    # --- DRIVE LAYOUT ---
    GOOGLE_DRIVE_SHARED_DRIVE_ID = os.getenv("GOOGLE_DRIVE_SHARED_DRIVE_ID")
    GOOGLE_DRIVE_BASE_FOLDER_NAME = os.getenv("GOOGLE_DRIVE_BASE_FOLDER_NAME", "Documentos ERP")
    USER_DOCUMENTS_DRIVE_ID = os.getenv("USER_DOCUMENTS_DRIVE_ID")
    USER_DOCUMENTS_BASE_FOLDER_NAME = os.getenv("USER_DOCUMENTS_BASE_FOLDER_NAME", "Equipo GEP Group")

    # --- PERMISSIONS ---
    DRIVE_PERMISSION_DOMAIN = os.getenv("DRIVE_PERMISSION_DOMAIN")
    DRIVE_PERMISSION_ROLE = os.getenv("DRIVE_PERMISSION_ROLE", "reader")

    # --- MOCK DRIVE (local development / tests) ---
    USE_MOCK_DRIVE = _env_flag("USE_MOCK_DRIVE")
    MOCK_DRIVE_DB_FILE = os.getenv("MOCK_DRIVE_DB_FILE")

    # --- FOLDER LOCKS ---
    # "memory" guards one process; "redis" also guards every process sharing REDIS_URL.
    FOLDER_LOCKS_BACKEND = os.getenv("FOLDER_LOCKS_BACKEND", "memory").strip().lower()
    REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
    FOLDER_LOCK_TIMEOUT = int(os.getenv("FOLDER_LOCK_TIMEOUT", "30"))

    # --- STARTUP ---
    CREATE_TABLES_ON_STARTUP = _env_flag("CREATE_TABLES_ON_STARTUP")

    # --- UPLOAD LIMITS ---
    SESSION_DOCUMENT_MAX_BYTES = int(os.getenv("SESSION_DOCUMENT_MAX_BYTES", str(4 * 1024 * 1024)))
    TRAINER_DOCUMENT_MAX_BYTES = int(os.getenv("TRAINER_DOCUMENT_MAX_BYTES", str(10 * 1024 * 1024)))

    # --- CORS ---
    _DEFAULT_CORS_ORIGINS = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", ",".join(_DEFAULT_CORS_ORIGINS))

    # Optional regex for additional origins (e.g. preview deployments).
    CORS_ORIGIN_REGEX = os.getenv("CORS_ORIGIN_REGEX", None)

    # --- LOGGING ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


config = Config()
