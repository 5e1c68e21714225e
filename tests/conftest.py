import time
from typing import Any, Dict, List, Optional

import pytest
import stripe

from givecart import create_app
from givecart.blueprints.payments import RETRIEVER_EXT
from givecart.config import TestingConfig
from givecart.extensions import db
from givecart.models import Cause


class FakeStripe:
    """Stands in for ``client.checkout.sessions.retrieve``."""

    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[Exception] = None

    def add(self, session_id: str, **overrides: Any) -> Dict[str, Any]:
        session = {
            "id": session_id,
            "payment_status": "paid",
            "status": "complete",
            "amount_total": 2500,
            "currency": "usd",
            "customer_details": {"email": "buyer@example.com"},
            "metadata": {
                "order_number": f"ORD-{session_id}",
                "product_name": "Tote Bag",
                "quantity": "1",
                "donation_cents": "500",
                "cause_id": "cause-1",
                "cause_name": "River Cleanup",
            },
        }
        md = overrides.pop("metadata", None)
        if md is not None:
            session["metadata"].update(md)
        session.update(overrides)
        self.sessions[session_id] = session
        return session

    def retrieve(self, session_id: str) -> Dict[str, Any]:
        self.calls.append(session_id)
        if self.fail_with is not None:
            raise self.fail_with
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{session_id}'",
                "id",
                code="resource_missing",
                http_status=404,
            )
        return self.sessions[session_id]


@pytest.fixture
def app(tmp_path):
    app = create_app(
        TestingConfig,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'givecart-test.db'}",
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def fake_stripe(app):
    fake = FakeStripe()
    app.extensions[RETRIEVER_EXT] = fake.retrieve
    return fake


@pytest.fixture
def cause(session):
    c = Cause(id="cause-1", name="River Cleanup", raised_cents=0, goal_cents=77700)
    session.add(c)
    session.commit()
    return c


@pytest.fixture
def fake_clock():
    class Clock:
        def __init__(self) -> None:
            self.now = time.monotonic()

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return Clock()
