"""
Fixtures for end-to-end tests.
"""

import os
import shutil
import tempfile
from typing import Generator

import pytest


@pytest.fixture
def temp_profile_dir() -> Generator[str, None, None]:
    """Create a temporary browser profile directory for testing."""
    temp_dir = tempfile.mkdtemp(prefix="arena_e2e_test_")
    try:
        yield temp_dir
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def chrome_exec() -> str:
    """Find a Chrome/Chromium executable for testing."""
    override = os.environ.get("ARENA_EXECUTABLE_PATH")
    if override and os.path.exists(override):
        return override

    chrome_paths = [
        # Windows
        "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
        "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
        # macOS
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        # Linux
        "/usr/bin/google-chrome",
        "/opt/google/chrome/chrome",
        "/usr/bin/chromium-browser",
        "/usr/bin/chromium",
    ]
    for path in chrome_paths:
        if os.path.exists(path):
            return path

    for name in ("chromium", "chromium-browser", "google-chrome"):
        found = shutil.which(name)
        if found:
            return found

    pytest.skip("Chrome/Chromium executable not found for end-to-end testing")
