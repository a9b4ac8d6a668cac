from datetime import date

import pytest

from app import create_app
from extensions import db
from models import ROLE_ADMIN, ROLE_EMPLOYEE, User

PASSWORD = "secret-pw"


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


def _user(nip, name, role=ROLE_EMPLOYEE, **flags):
    u = User(nip=nip, email=f"{nip}@rsi.test", name=name, role=role, unit="Rawat Inap", **flags)
    u.set_password(PASSWORD)
    db.session.add(u)
    return u


@pytest.fixture
def people(app):
    """Ids of a full reviewer chain around one employee, plus an admin."""
    with app.app_context():
        admin = _user("9000", "Admin", role=ROLE_ADMIN)
        dirut = _user("1000", "Direktur", can_be_dirut=True)
        manager = _user("2001", "Manajer", can_be_manager=True)
        kaunit = _user("2002", "Ka Unit", can_be_ka_unit=True)
        supervisor = _user("2003", "Supervisor", can_be_supervisor=True)
        mentor = _user("2004", "Mentor", can_be_mentor=True)
        employee = _user("3001", "Perawat Satu")
        solo = _user("3002", "Perawat Dua")
        db.session.flush()

        employee.mentor_id = mentor.id
        employee.supervisor_id = supervisor.id
        employee.ka_unit_id = kaunit.id
        employee.manager_id = manager.id
        # mentor only: mentor -> approved
        solo.mentor_id = mentor.id
        db.session.commit()

        return {
            "admin": admin.id,
            "dirut": dirut.id,
            "manager": manager.id,
            "kaunit": kaunit.id,
            "supervisor": supervisor.id,
            "mentor": mentor.id,
            "employee": employee.id,
            "solo": solo.id,
        }


@pytest.fixture
def login(app):
    """login(user_id) -> a test client with that user's session."""

    def _login(user_id):
        with app.app_context():
            email = db.session.get(User, user_id).email
        client = app.test_client()
        resp = client.post("/users/login", json={"email": email, "password": PASSWORD})
        assert resp.status_code == 200, resp.get_json()
        return client

    return _login


@pytest.fixture
def jan_20():
    return date(2026, 1, 20)
