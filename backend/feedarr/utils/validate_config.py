"""
Configuration validation

Checks the environment before the service is started:

  python -m feedarr.utils.validate_config [--skip-network]

Exit code is 0 only when no check failed.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url

from feedarr.core.config import Settings, settings as default_settings
from feedarr.core.database import build_engine, build_session_factory, close_db, init_db
from feedarr.services.arr_client import ArrApiClient
from feedarr.services.cache_store import CacheStore

PLACEHOLDER_VALUES = {"", "your-api-key-here", "your-secret-key-here"}
REQUIRED_SETTINGS = {
    "SERVER_URL": "Target server URL",
    "SERVER_PORT": "Target server port",
    "API_KEY": "API authentication key",
    "API_BASE_URL": "API base path",
}
OPTIONAL_SETTINGS = {
    "PORT": "Local server port",
    "FETCH_FREQUENCY": "Data fetch interval (ms)",
    "RSS_CACHE_TTL": "RSS cache TTL (ms)",
    "DATABASE_URL": "Database URL",
    "FEEDS_DIR": "RSS feeds directory",
}


def mask_sensitive(key: str, value: Any) -> str:
    value = str(value)
    lowered = key.lower()
    if "key" in lowered or "secret" in lowered:
        return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "***"
    return value


class ConfigValidator:
    """Runs the configuration checks and keeps a pass/fail/warning tally"""

    def __init__(self, config: Optional[Settings] = None, api_client: Optional[ArrApiClient] = None):
        self.config = config or default_settings
        self.api_client = api_client or ArrApiClient(
            base_url=self.config.upstream_base_url,
            api_key=self.config.API_KEY,
            timeout=10.0,
        )
        self.results: Dict[str, Dict[str, Any]] = {
            "environment": {},
            "database": {},
            "api_endpoints": {},
            "permissions": {},
            "summary": {"passed": 0, "failed": 0, "warnings": 0},
        }

    async def validate(self, check_network: bool = True) -> bool:
        print("Validating Feedarr Configuration\n")

        self.validate_environment()
        await self.validate_database()
        if check_network:
            await self.validate_api_endpoints()
        self.validate_permissions()

        self.print_report()
        return self.results["summary"]["failed"] == 0

    def validate_environment(self) -> None:
        print("Environment Variables:")

        for key, description in REQUIRED_SETTINGS.items():
            value = getattr(self.config, key, None)
            if value is None or str(value).strip() in PLACEHOLDER_VALUES:
                self.fail(f"  [FAIL] {key}: Missing or default value ({description})")
                self.results["environment"][key] = {"status": "failed", "value": "missing"}
            else:
                self.pass_(f"  [ OK ] {key}: Set")
                self.results["environment"][key] = {"status": "passed", "value": mask_sensitive(key, value)}

        for key, description in OPTIONAL_SETTINGS.items():
            value = getattr(self.config, key)
            self.pass_(f"  [ OK ] {key}: {value}")
            self.results["environment"][key] = {"status": "passed", "value": value}

        print()

    async def validate_database(self) -> None:
        print("Database:")

        engine = build_engine(self.config.DATABASE_URL, echo=False)
        try:
            await init_db(engine)
            stats = await CacheStore(build_session_factory(engine)).statistics()
            self.pass_(f"  [ OK ] Database connection: Success ({stats['total_cache_entries']} cache entries)")
            self.results["database"]["connection"] = {"status": "passed"}
        except Exception as e:
            self.fail(f"  [FAIL] Database connection: Failed ({e})")
            self.results["database"]["connection"] = {"status": "failed", "error": str(e)}
        finally:
            await close_db(engine)

        print()

    async def validate_api_endpoints(self) -> None:
        print("API Endpoints:")

        if str(self.config.API_KEY).strip() in PLACEHOLDER_VALUES:
            self.fail("  [FAIL] API authentication: No valid API key configured")
            return

        for name, result in (await self.api_client.check_connectivity()).items():
            http_status = result.get("http_status")
            if http_status == 200:
                self.pass_(f"  [ OK ] {name}: HTTP 200 ({result.get('item_count')} items)")
                self.results["api_endpoints"][name] = {"status": "passed", **result}
            elif http_status == 401:
                self.fail(f"  [FAIL] {name}: Authentication failed (check API key)")
                self.results["api_endpoints"][name] = {"status": "failed", **result}
            elif http_status == 404:
                self.fail(f"  [FAIL] {name}: Endpoint not found (check API base URL)")
                self.results["api_endpoints"][name] = {"status": "failed", **result}
            elif http_status is None:
                self.fail(f"  [FAIL] {name}: {result.get('error')}")
                self.results["api_endpoints"][name] = {"status": "failed", **result}
            else:
                self.warn(f"  [WARN] {name}: HTTP {http_status} (unexpected)")
                self.results["api_endpoints"][name] = {"status": "warning", **result}

        print()

    def validate_permissions(self) -> None:
        print("File Permissions:")

        directories = {"RSS feeds directory": Path(self.config.FEEDS_DIR)}
        url = make_url(self.config.DATABASE_URL)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            directories["Database directory"] = Path(url.database).expanduser().parent

        for description, path in directories.items():
            try:
                path.mkdir(parents=True, exist_ok=True)
                if not os.access(path, os.R_OK | os.W_OK):
                    raise PermissionError(f"no read/write access to {path}")
                self.pass_(f"  [ OK ] {description}: Read/Write access")
                self.results["permissions"][str(path)] = {"status": "passed", "access": "read-write"}
            except OSError as e:
                self.fail(f"  [FAIL] {description}: {e}")
                self.results["permissions"][str(path)] = {"status": "failed", "error": str(e)}

        print()

    def pass_(self, message: str) -> None:
        print(message)
        self.results["summary"]["passed"] += 1

    def fail(self, message: str) -> None:
        print(message)
        self.results["summary"]["failed"] += 1

    def warn(self, message: str) -> None:
        print(message)
        self.results["summary"]["warnings"] += 1

    def print_report(self) -> None:
        summary = self.results["summary"]
        print("Summary:")
        print(f"  Passed: {summary['passed']}")
        print(f"  Failed: {summary['failed']}")
        print(f"  Warnings: {summary['warnings']}")

        if summary["failed"] == 0:
            print("\nConfiguration validation successful! The application should work correctly.")
        else:
            print("\nConfiguration validation failed. Please fix the issues above before running the application.")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Validate Feedarr configuration")
    parser.add_argument("--skip-network", action="store_true", help="Do not contact the upstream API")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)
    success = asyncio.run(ConfigValidator().validate(check_network=not args.skip_network))
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
