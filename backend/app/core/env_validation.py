"""
Runtime Environment Validation Module

Validates the environment at application startup. If validation fails the
application refuses to start (hard fail) instead of erroring on the first
request that needs the missing setting.
"""

import os
import sys

from pydantic import ValidationError

from app.core.config import Settings, StorageProvider


def validate_environment() -> Settings:
    """
    Validate all required environment variables at startup.

    Returns:
        Settings: Validated settings object

    Raises:
        SystemExit: If validation fails (exit code 1)
    """
    try:
        settings = Settings()
    except ValidationError as e:
        print("❌ FATAL: Environment validation failed", file=sys.stderr)
        print("\nMissing or invalid environment variables:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        print("\nPlease check your .env file or environment variables.", file=sys.stderr)
        sys.exit(1)

    problems = []

    # 1. CORS: no wildcard outside debug
    if not settings.debug and "*" in settings.cors_origins:
        problems.append("Wildcard CORS origin (*) is not allowed when DEBUG is off")

    # 2. Storage provider configuration
    if settings.storage_provider == StorageProvider.GCS:
        if not settings.gcs_bucket_name or not settings.gcs_project_id:
            problems.append("GCS_BUCKET_NAME and GCS_PROJECT_ID required when STORAGE_PROVIDER=gcs")
    elif not settings.s3_bucket_name or not settings.aws_access_key_id or not settings.aws_secret_access_key:
        problems.append(
            "S3_BUCKET_NAME, AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY required when STORAGE_PROVIDER=s3"
        )

    # 3. Firebase credentials file
    if settings.google_application_credentials and not os.path.exists(settings.google_application_credentials):
        problems.append(f"Firebase credentials file not found: {settings.google_application_credentials}")

    # 4. Database URL
    if not settings.database_url.startswith("postgresql"):
        problems.append("DATABASE_URL must be a PostgreSQL connection string (postgresql+asyncpg://)")

    if settings.max_upload_size_mb <= 0:
        problems.append("MAX_UPLOAD_SIZE_MB must be positive")

    if problems:
        for problem in problems:
            print(f"❌ FATAL: {problem}", file=sys.stderr)
        sys.exit(1)

    print("✅ Environment validation passed")
    print(f"   App: {settings.app_name}")
    print(f"   Storage: {settings.storage_provider.value}")
    print(f"   CORS Origins: {settings.allowed_origins}")
    return settings


if __name__ == "__main__":
    validate_environment()
