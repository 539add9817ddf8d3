import pytest
from fastapi.testclient import TestClient

from mcpgate.actions import InMemoryPlatformServices
from mcpgate.db import Database
from mcpgate.gateway import build_gateway
from mcpgate.main import create_app
from mcpgate.tenant_secrets import SecretCipher

SEED = {
    "companies": [
        {"id": "c-1", "name": "Acme Steel", "org_number": "556001", "industry_code": "24",
         "employees": 120, "created_at": "2026-01-01T00:00:01Z"},
        {"id": "c-2", "name": "Nordic Parts", "org_number": "556002", "industry_code": "28",
         "employees": 40, "is_approved_supplier": True, "owner_id": "supplier-user",
         "ratings": {"quality": 80, "price": 70, "delivery": 90},
         "created_at": "2026-01-01T00:00:02Z"},
        {"id": "c-3", "name": "Baltic Freight", "org_number": "556003", "industry_code": "49",
         "employees": 15, "is_approved_supplier": True, "owner_id": "someone-else",
         "created_at": "2026-01-01T00:00:03Z"},
    ],
    "projects": [
        {"id": "p-1", "tenant_id": "acme", "title": "ERP rollout", "description": "Phase one",
         "current_phase": "planning", "owner_id": "u-1", "created_at": "2026-01-02T00:00:01Z"},
        {"id": "p-2", "tenant_id": "acme", "title": "Supplier audit", "description": "Yearly",
         "current_phase": "execution", "owner_id": "u-2", "created_at": "2026-01-02T00:00:02Z"},
        {"id": "p-3", "tenant_id": "globex", "title": "Other tenant", "description": "Hidden",
         "current_phase": "planning", "owner_id": "u-9", "created_at": "2026-01-02T00:00:03Z"},
    ],
}


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "mcpgate.db")
    database.init_schema()
    yield database
    database.close()


@pytest.fixture
def cipher():
    return SecretCipher(SecretCipher.generate_key())


@pytest.fixture
def services():
    return InMemoryPlatformServices(seed=SEED)


@pytest.fixture
def gateway(db, services, cipher):
    return build_gateway(db=db, services=services, cipher=cipher)


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))
