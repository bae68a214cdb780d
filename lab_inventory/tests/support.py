import os
from datetime import datetime

os.environ.setdefault("LAB_INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)
os.environ["EMAIL_SERVER_HOST"] = ""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lab_inventory.db.base import Base
from lab_inventory.models import inventory_models  # noqa: F401
from lab_inventory.models.enums import Role
from lab_inventory.services.catalog_service import create_category, create_department, create_item
from lab_inventory.services.settings_service import DEFAULT_SETTINGS, build_lab_settings
from lab_inventory.services.user_service import create_user


NOW = datetime(2026, 3, 2, 10, 0, 0)
PASSWORD = "correct-horse-battery"


def make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def default_settings(**overrides):
    values = dict(DEFAULT_SETTINGS)
    values.update(overrides)
    return build_lab_settings(values)


class CollectingNotifier:
    def __init__(self):
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)

    def subjects(self):
        return [message.subject for message in self.messages]


class LabFixture:
    """Two departments, one category and a handful of users and items.

    CS holds an Arduino kit, a spare oscilloscope (shared with EE for transfer)
    and a consumable resistor pack (also shared with EE).
    """

    def __init__(self, db):
        self.db = db
        self.cs = create_department(db, code="CS", name="Computer Science")
        self.ee = create_department(db, code="EE", name="Electrical Engineering")
        self.category = create_category(db, name="Electronics", max_borrow_duration=14)

        self.student = self._user("Sam Student", "sam@uni.test", Role.STUDENT)
        self.faculty = self._user("Fran Faculty", "fran@uni.test", Role.FACULTY)
        self.cs_incharge = self._user("Casey Incharge", "casey@uni.test", Role.INCHARGE, [self.cs.DepartmentID])
        self.ee_incharge = self._user("Eli Incharge", "eli@uni.test", Role.INCHARGE, [self.ee.DepartmentID])
        self.admin = self._user("Ada Admin", "ada@uni.test", Role.ADMIN)

        self.arduino = create_item(
            db,
            name="Arduino Uno Kit",
            category_id=self.category.CategoryID,
            department_id=self.cs.DepartmentID,
        )
        self.scope = create_item(
            db,
            name="Oscilloscope",
            category_id=self.category.CategoryID,
            department_id=self.cs.DepartmentID,
            transfer_department_ids=[self.ee.DepartmentID],
        )
        self.resistors = create_item(
            db,
            name="Resistor Pack",
            category_id=self.category.CategoryID,
            department_id=self.cs.DepartmentID,
            is_consumable=True,
            current_stock=100,
            min_stock_level=10,
            transfer_department_ids=[self.ee.DepartmentID],
        )

    def _user(self, name, email, role, department_ids=None):
        return create_user(
            self.db,
            name=name,
            email=email,
            role=role.value,
            password=PASSWORD,
            is_approved=True,
            department_ids=department_ids,
        )
