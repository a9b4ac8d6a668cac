"""
init_db.py
----------
Create the schema and seed demo users (admin, director, reviewers, employees).
DEVELOPMENT USE ONLY
"""

import logging
import os

from app import create_app
from extensions import db
from models import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_SUPER_ADMIN, User

logger = logging.getLogger(__name__)

DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "123456")

# (nip, email, name, role, unit, capability flags)
DEMO_USERS = [
    ("0001", "superadmin@rsi.local", "Super Admin", ROLE_SUPER_ADMIN, "IT", {}),
    ("0002", "admin@rsi.local", "Admin SDI", ROLE_ADMIN, "SDI", {}),
    ("1001", "dirut@rsi.local", "Direktur Utama", ROLE_EMPLOYEE, "Direksi", {"can_be_dirut": True}),
    ("2001", "manager@rsi.local", "Manajer Keperawatan", ROLE_EMPLOYEE, "Keperawatan", {"can_be_manager": True}),
    ("2002", "kaunit@rsi.local", "Kepala Unit Rawat Inap", ROLE_EMPLOYEE, "Rawat Inap", {"can_be_ka_unit": True}),
    ("2003", "supervisor@rsi.local", "Supervisor Rawat Inap", ROLE_EMPLOYEE, "Rawat Inap", {"can_be_supervisor": True}),
    ("2004", "mentor@rsi.local", "Mentor Rawat Inap", ROLE_EMPLOYEE, "Rawat Inap", {"can_be_mentor": True}),
    ("3001", "perawat1@rsi.local", "Perawat Satu", ROLE_EMPLOYEE, "Rawat Inap", {}),
    ("3002", "perawat2@rsi.local", "Perawat Dua", ROLE_EMPLOYEE, "Rawat Inap", {}),
]


def seed_users():
    by_nip = {}
    for nip, email, name, role, unit, flags in DEMO_USERS:
        user = User.query.filter_by(nip=nip).first()
        if user is None:
            user = User(nip=nip, email=email, name=name, role=role, unit=unit)
            user.set_password(DEMO_PASSWORD)
            db.session.add(user)
        for flag, value in flags.items():
            setattr(user, flag, value)
        by_nip[nip] = user
    db.session.flush()

    for nip in ("3001", "3002"):
        employee = by_nip[nip]
        employee.mentor_id = by_nip["2004"].id
        employee.supervisor_id = by_nip["2003"].id
        employee.ka_unit_id = by_nip["2002"].id
        employee.manager_id = by_nip["2001"].id

    db.session.commit()
    return by_nip


def init_db(config_object="config.DevConfig"):
    app = create_app(config_object)
    with app.app_context():
        db.create_all()
        users = seed_users()
        logger.info("Database ready | users=%s", len(users))
    return app


if __name__ == "__main__":
    init_db()
    print(f"Database initialized. Demo password: {DEMO_PASSWORD}")
