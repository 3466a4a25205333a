import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def catalog_client():
    import main
    import repo

    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    return TestClient(main.app)


@pytest.fixture
def seeded(catalog_client):
    r = catalog_client.put("/products/SKU1", json={"name": "Shirt", "price_cents": 100, "stock": 5})
    assert r.status_code == 200
    return catalog_client
