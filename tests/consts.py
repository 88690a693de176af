"""Constant values used for tests."""

from pathlib import Path

THIS_DIR = Path(__file__).parent
PROJECT_DIR = (THIS_DIR / "../").resolve()

BASE_URL = "http://testserver"

DRIVER_ID = "driver-temp-1"
OTHER_DRIVER_ID = "driver-temp-2"
PERMANENT_DRIVER_ID = "driver-perm-1"
DRIVER_TOKEN = "driver-access-token"
