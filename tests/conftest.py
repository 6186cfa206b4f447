import pytest
import os
from types import SimpleNamespace

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import stockflow.models  # noqa: F401
from stockflow.core.config import settings
from stockflow.core.deps import get_db
from stockflow.core.security import create_access_token, hash_password
from stockflow.db.base import Base
from stockflow.main import app
from stockflow.models.item import Item, Partner, Vendor, Warehouse
from stockflow.models.user import User
from stockflow.routers.auth import login_rate_limiter
from stockflow.services.ledger_service import post_opening_balance

# username -> role; two users for the roles whose segregation rules are tested.
SEED_USERS = {
    "admin": "admin",
    "mgr_maya": "manager",
    "mgr_omar": "manager",
    "buy_bella": "purchasing",
    "fin_felix": "finance",
    "wh_ana": "warehouse",
    "wh_budi": "warehouse",
    "aud_ira": "auditor",
    "staff_sam": "staff",
    "staff_tia": "staff",
}

SEED_ITEMS = {
    "itm_tape": ("TAPE-48", "Packing tape 48mm"),
    "itm_box": ("BOX-M", "Carton box medium"),
    "itm_wrap": ("WRAP-50", "Bubble wrap 50cm"),
}


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    login_rate_limiter.clear()


@pytest.fixture()
def stock_env(test_context):
    """
    Seeded master data plus one user per role.

    ``env.headers[username]`` holds a bearer header; ``env.users[username]``
    the user id. ``env.set_opening(item_id, qty)`` posts an opening balance
    straight through the ledger service.
    """
    client, session_local = test_context
    users: dict[str, str] = {}
    password_hash = hash_password("password123")

    with session_local() as db:
        for username, role in SEED_USERS.items():
            user = User(
                username=username,
                full_name=username.replace("_", " ").title(),
                role=role,
                hashed_password=password_hash,
                is_active=True,
            )
            db.add(user)
            db.flush()
            users[username] = user.id
        for item_id, (sku, name) in SEED_ITEMS.items():
            db.add(Item(id=item_id, sku=sku, name=name, uom="pcs", current_stock=0, is_active=True))
        db.add(Warehouse(id="wh_main", code="MAIN", name="Main warehouse", is_default=True))
        db.add(Vendor(id="ven_acme", code="ACME", name="Acme Packaging"))
        db.add(Partner(id="ptn_store", code="STORE-1", name="Downtown store", contact="store@example.com"))
        db.commit()

    def set_opening(item_id: str, quantity: int) -> None:
        with session_local() as db:
            post_opening_balance(db, actor_user_id=users["admin"], item_id=item_id, quantity=quantity)
            db.commit()

    def stock_of(item_id: str) -> int:
        with session_local() as db:
            return db.get(Item, item_id).current_stock

    return SimpleNamespace(
        client=client,
        session_local=session_local,
        users=users,
        headers={
            username: {"Authorization": f"Bearer {create_access_token(user_id)}"}
            for username, user_id in users.items()
        },
        set_opening=set_opening,
        stock_of=stock_of,
    )
