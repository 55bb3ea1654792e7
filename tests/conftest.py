"""
pytest configuration for doh-proxy tests

This file ensures tests can find the doh_proxy package and the shared
helpers in tests/test_utils.py regardless of environment
"""

import sys
from pathlib import Path

# Add parent directory to path so tests can import doh_proxy
repo_root = Path(__file__).parent.parent
tests_dir = Path(__file__).parent
for path in (repo_root, tests_dir):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: starts a real proxy process")
