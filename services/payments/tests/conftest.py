import os
import tempfile
from pathlib import Path

import pytest

# repo.py binds its engine at import time
os.environ["DATABASE_URL"] = f"sqlite:///{Path(tempfile.mkdtemp()) / 'payments.db'}"
os.environ.setdefault("PAYMENTS_DB_WAIT_SECS", "0")


@pytest.fixture()
def api():
    from fastapi.testclient import TestClient

    import main

    with TestClient(main.app) as c:
        yield c
