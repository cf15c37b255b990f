"""
Pytest configuration shared by gateway and service tests.

The services read their settings at import time, so the environment is
prepared here before any test module imports them.
"""

import os
import tempfile

import pytest

JWT_SECRET = "test-secret"

_db_dir = tempfile.mkdtemp(prefix="delivery-tests-")
os.environ.setdefault("JWT_SECRET", JWT_SECRET)
os.environ.setdefault("DATABASE_URL_USER", f"sqlite:///{os.path.join(_db_dir, 'users.db')}")
os.environ.setdefault("DATABASE_URL_RESTAURANT", f"sqlite:///{os.path.join(_db_dir, 'restaurants.db')}")
os.environ.setdefault("DATABASE_URL_ORDER", f"sqlite:///{os.path.join(_db_dir, 'orders.db')}")


@pytest.fixture
def jwt_secret():
    return os.environ["JWT_SECRET"]
