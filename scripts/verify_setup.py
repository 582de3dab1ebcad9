#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the API or the
reminder worker. Run this after setting up your .env file.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_env_file() -> bool:
    """Check if .env file exists."""
    env_path = project_root / ".env"
    exists = env_path.exists()
    if not exists:
        print_result(".env file", False, "File not found. Defaults will be used")
    else:
        print_result(".env file", True, "Found")
    return exists


def check_required_vars() -> dict[str, bool]:
    """Check required environment variables."""
    results = {}

    required = [
        ("DATABASE_URL", "Required for PostgreSQL"),
        ("REDIS_URL", "Required for the slot cache and reminder outbox"),
    ]

    for var, description in required:
        value = os.getenv(var, "")
        if not value:
            print_result(var, False, f"Not set - {description}")
            results[var] = False
            continue

        # Mask credentials in connection URLs
        masked = value.split("@")[-1] if "@" in value else value
        print_result(var, True, f"Set (...@{masked})" if "@" in value else f"Set ({masked})")
        results[var] = True

    return results


def check_optional_vars() -> None:
    """Check optional environment variables."""
    optional = [
        ("APP_ENV", "development"),
        ("DEBUG", "false"),
        ("PORT", "8000"),
        ("AVAILABILITY_CACHE_TTL", "3600"),
        ("MAX_EXPANSION_DAYS", "366"),
        ("REMINDER_POLL_INTERVAL", "60"),
    ]

    for var, default in optional:
        value = os.getenv(var, default)
        print_result(var, True, f"{value}")


def check_timezone() -> bool:
    """Verify the default therapist timezone resolves."""
    from app.config import get_settings
    from app.core.calendar.errors import ValidationError
    from app.core.calendar.types import resolve_timezone

    name = get_settings().default_timezone
    try:
        resolve_timezone(name)
    except ValidationError as e:
        print_result("DEFAULT_TIMEZONE", False, e.message)
        return False

    print_result("DEFAULT_TIMEZONE", True, name)
    return True


async def check_postgres() -> bool:
    """Verify PostgreSQL connection."""
    from app.infra.database import check_db_health
    healthy = await check_db_health()

    if healthy:
        print_result("PostgreSQL", True, "Connection successful")
    else:
        print_result("PostgreSQL", False, "Connection failed")
    return healthy


async def check_redis() -> bool:
    """Verify Redis connection."""
    from app.infra.redis import RedisClient, check_redis_health
    healthy = await check_redis_health()

    if healthy:
        print_result("Redis", True, "Connection successful")
    else:
        print_result("Redis", False, "Connection failed (slots will not be cached)")
    await RedisClient.close()
    return healthy


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    else:
        print_result("Python packages", True, "All required packages installed")
        return True


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Therapy Calendar - Setup Verification")
    print("="*60)

    all_passed = True
    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        # Nothing below can be imported without them
        return 1

    print_header("Required Environment Variables")
    var_results = check_required_vars()
    if not all(var_results.values()):
        all_passed = False

    print_header("Optional Environment Variables")
    check_optional_vars()
    if not check_timezone():
        critical_failed = True

    print_header("Service Connections")

    if not await check_postgres():
        critical_failed = True

    if not await check_redis():
        all_passed = False  # Non-critical: cache and notifications degrade

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required checks failed.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1
    elif not all_passed:
        print("\n  \033[93mWARNING: Some optional checks failed.\033[0m")
        print("  The application may run with limited functionality.")
        print()
        return 0
    else:
        print("\n  \033[92mAll checks passed!\033[0m")
        print("  You can start the application with:")
        print("    uvicorn app.main:app --reload")
        print("    python -m app.workers.reminder_worker")
        print()
        return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
