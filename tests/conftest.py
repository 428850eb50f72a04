import os

import pytest
from flask_jwt_extended import create_access_token

from schedule_api import create_app
from schedule_api.extensions import db
from schedule_api.models.org import Org
from schedule_api.models.user import User, UserRole
from schedule_api.models.workplace import Workplace


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


@pytest.fixture(scope="function")
def org(app):
    o = Org(name="Acme", slug="acme")
    db.session.add(o); db.session.commit()
    return o


def make_user(org, email, role=UserRole.USER, full_name=None):
    u = User(
        org_id=org.id if org is not None else None,
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        role=role,
    )
    u.set_password("secret123")
    db.session.add(u); db.session.commit()
    return u


def make_workplace(org, code, name=None, color="#4f46e5"):
    w = Workplace(org_id=org.id, code=code, name=name or code, color=color)
    db.session.add(w); db.session.commit()
    return w


def auth(user):
    token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def manager(org):
    return make_user(org, "boss@acme.test", UserRole.MANAGER, "Boss Manager")


@pytest.fixture(scope="function")
def employee(org):
    return make_user(org, "anna@acme.test", UserRole.USER, "Anna Worker")


@pytest.fixture(scope="function")
def other_employee(org):
    return make_user(org, "ben@acme.test", UserRole.USER, "Ben Worker")


@pytest.fixture(scope="function")
def workplace(org):
    return make_workplace(org, "HQ", "Head office")
