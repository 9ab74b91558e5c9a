from datetime import timedelta
from unittest.mock import Mock

import pytest
import requests
from faker import Faker

from payrecon import create_app
from payrecon.extensions import db
from payrecon.gateway import GatewayClient, RetryPolicy
from payrecon.models import CheckoutSession, CheckoutStatus, Plan, User
from payrecon.utils import utcnow
from payrecon.webhooks.engine import AcknowledgementDispatcher, WebhookIngestionEngine
from tests.helpers import run_inline

# Initialize Faker for generating test data
fake = Faker()


# Custom pytest marks for organizing tests
def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running"
    )
    config.addinivalue_line(
        "markers",
        "db: mark test as database-intensive"
    )
    config.addinivalue_line(
        "markers",
        "payment: mark test as payment-related"
    )


@pytest.fixture(scope="session")
def app():
    """Create application for testing on an in-memory database"""
    app = create_app("testing")

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def clean_db(app):
    """Empty every table after each test"""
    yield
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.remove()
    app.extensions.pop("webhook_engine", None)
    app.extensions.pop("checkout_manager", None)


@pytest.fixture()
def client(app):
    return app.test_client()


# ---------- processor HTTP doubles ----------

@pytest.fixture()
def http_session():
    """Stand-in for requests.Session used by the gateway client"""
    return Mock(spec=requests.Session)


@pytest.fixture()
def sleep():
    return Mock()


@pytest.fixture()
def gateway(app, http_session, sleep):
    return GatewayClient(
        base_url=app.config["GROW_API_BASE_URL"],
        page_code=app.config["GROW_PAGE_CODE"],
        user_code=app.config["GROW_USER_ID"],
        retry_policy=RetryPolicy(max_attempts=3, initial_delay=1.0, backoff_multiplier=2.0, max_delay=10.0),
        session=http_session,
        sleep=sleep,
    )


@pytest.fixture()
def engine(app, gateway):
    """Webhook engine whose acknowledgement runs synchronously"""
    engine = WebhookIngestionEngine(
        app=app,
        gateway=gateway,
        dispatcher=AcknowledgementDispatcher(app, gateway, runner=run_inline),
    )
    app.extensions["webhook_engine"] = engine
    return engine


# ---------- data factories ----------

@pytest.fixture()
def make_plan():
    def _make(name=None, monthly_price=99, yearly_price=990, max_installments=12, is_active=True):
        plan = Plan(
            name=name or fake.unique.word().upper(),
            display_name=fake.word().title(),
            monthly_price=monthly_price,
            yearly_price=yearly_price,
            max_installments=max_installments,
            features={},
            is_active=is_active,
        )
        db.session.add(plan)
        db.session.commit()
        return plan

    return _make


@pytest.fixture()
def free_plan(make_plan):
    return make_plan(name="FREE", monthly_price=0, yearly_price=0, max_installments=1)


@pytest.fixture()
def pro_plan(make_plan):
    return make_plan(name="PRO", monthly_price=99, yearly_price=990)


@pytest.fixture()
def make_user():
    def _make(**overrides):
        values = {
            "id": fake.uuid4(),
            "email": fake.unique.email(),
            "first_name": fake.first_name(),
            "last_name": fake.last_name(),
            "phone": fake.phone_number()[:20],
        }
        values.update(overrides)
        user = User(**values)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_checkout_session():
    def _make(user, plan, amount=99, billing_period="monthly", process_id=None, expires_in=timedelta(hours=1), **overrides):
        now = utcnow()
        session = CheckoutSession(
            user_id=user.id,
            plan_id=plan.id,
            plan_snapshot=plan.snapshot(),
            billing_period=billing_period,
            amount=amount,
            installments=overrides.pop("installments", 1),
            credit_days=overrides.pop("credit_days", 0),
            process_id=process_id or str(fake.random_number(digits=8, fix_len=True)),
            process_token=fake.sha1(),
            status=overrides.pop("status", CheckoutStatus.PENDING),
            created_at=now,
            expires_at=now + expires_in,
            **overrides,
        )
        db.session.add(session)
        db.session.commit()
        return session

    return _make


@pytest.fixture()
def webhook_body():
    """Grow notify payload as a dict"""
    def _build(user_id=None, transaction_id=None, process_id=None, status_code="2", amount="99", **data):
        custom = data.pop("custom_fields", None)
        if custom is None:
            custom = {"cField1": user_id} if user_id is not None else {}
        body = {
            "status": "1",
            "data": {
                "transactionId": transaction_id or f"txn_{fake.uuid4()[:12]}",
                "processId": process_id or str(fake.random_number(digits=8, fix_len=True)),
                "processToken": fake.sha1(),
                "asmachta": str(fake.random_number(digits=6)),
                "cardSuffix": "4242",
                "cardBrand": "Visa",
                "statusCode": status_code,
                "status": "שולם" if status_code == "2" else "Payment failed",
                "sum": amount,
                "paymentType": "1",
                "description": fake.sentence(),
                "customFields": custom,
            },
        }
        body["data"].update(data)
        return body

    return _build
