"""
Test configuration and fixtures for the Tripsheet Billing application
"""

import os

import pytest

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'TESTING': 'true',
    'SESSION_SECRET': 'test_secret_key_for_testing_only',
    'DATABASE_URL': 'sqlite:///:memory:',
    'LOG_LEVEL': 'WARNING',
})

from app import create_app, db
from models import (User, UserRole, VehicleType, Vehicle, Tripsheet, TripsheetEntry,
                    AdvanceSalary, TripsheetStatus, EntryStatus, AdvanceStatus)
from utils.time_calculator import (calculate_total_hours, calculate_extra_hours,
                                   calculate_driver_extra_hours, get_day_type, get_day_name,
                                   month_dates)
import factory
from factory import Faker
from werkzeug.security import generate_password_hash

TEST_PASSWORD = 'testpass123'
_PASSWORD_HASH = generate_password_hash(TEST_PASSWORD)


@pytest.fixture(scope='function')
def app():
    """Create application for testing"""
    app = create_app()
    app.config.update({
        'TESTING': True,
        'WTF_CSRF_ENABLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session for testing"""
    yield db.session
    db.session.rollback()


# Factory classes for test data generation
class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        abstract = True
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "commit"


class VehicleTypeFactory(BaseFactory):
    class Meta:
        model = VehicleType

    name = factory.Sequence(lambda n: f"Sedan {n}")
    code = factory.Sequence(lambda n: f"SDN{n:03d}")
    base_amount = 55000.0
    base_days = 22
    extra_day_rate = 2500.0
    extra_km_rate = 10.0
    base_hours_per_day = 10.0
    extra_hour_rate = 100.0


class VehicleFactory(BaseFactory):
    class Meta:
        model = Vehicle

    vehicle_number = factory.Sequence(lambda n: f"KA01AB{n:04d}")
    vehicle_type = factory.SubFactory(VehicleTypeFactory)
    description = "Toyota Innova Crysta"
    route = Faker('city')
    current_odometer = 10000


class UserFactory(BaseFactory):
    class Meta:
        model = User

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@test.com")
    password_hash = _PASSWORD_HASH
    name = Faker('name')
    phone = factory.Sequence(lambda n: f"98450{n:05d}")
    role = UserRole.DRIVER
    is_active_user = True


class DriverFactory(UserFactory):
    username = factory.Sequence(lambda n: f"driver{n}")
    email = factory.Sequence(lambda n: f"driver{n}@test.com")
    license_number = factory.Sequence(lambda n: f"KA01{n:011d}")
    assigned_vehicle = factory.SubFactory(VehicleFactory)


class AdminUserFactory(UserFactory):
    role = UserRole.ADMIN
    username = factory.Sequence(lambda n: f"admin{n}")
    email = factory.Sequence(lambda n: f"admin{n}@test.com")


class TripsheetFactory(BaseFactory):
    class Meta:
        model = Tripsheet

    tripsheet_number = factory.Sequence(lambda n: f"TSF-{n:05d}")
    driver = factory.SubFactory(DriverFactory)
    vehicle = factory.SelfAttribute('driver.assigned_vehicle')
    month = 1
    year = 2025
    status = TripsheetStatus.DRAFT


class AdvanceSalaryFactory(BaseFactory):
    class Meta:
        model = AdvanceSalary

    advance_number = factory.Sequence(lambda n: f"ADVF-{n:05d}")
    driver = factory.SubFactory(DriverFactory)
    vehicle = factory.SelfAttribute('driver.assigned_vehicle')
    amount = 5000.0
    requested_month = 1
    requested_year = 2025
    reason = "Medical expenses"
    status = AdvanceStatus.PAID


def fill_tripsheet(tripsheet, working_days, daily_km=100, starting_time='08:00',
                   closing_time='18:00', pending_days=0, fuel=None):
    """
    Write one entry per day of the tripsheet's month: the first working_days
    as working, the last pending_days as pending and the rest off.
    """
    days = month_dates(tripsheet.month, tripsheet.year)
    total_hours = calculate_total_hours(starting_time, closing_time)
    odometer = 10000

    for index, day in enumerate(days):
        entry = TripsheetEntry(
            tripsheet_id=tripsheet.id,
            entry_date=day,
            day_of_week=get_day_name(day),
            day_type=get_day_type(day),
        )
        if index < working_days:
            entry.status = EntryStatus.WORKING
            entry.starting_km = odometer
            entry.closing_km = odometer + daily_km
            entry.total_km = daily_km
            entry.starting_time = starting_time
            entry.closing_time = closing_time
            entry.total_hours = total_hours
            entry.extra_hours = calculate_extra_hours(total_hours)
            entry.driver_extra_hours = calculate_driver_extra_hours(total_hours)
            if fuel:
                entry.fuel_litres, entry.fuel_amount = fuel
            odometer += daily_km
        elif index >= len(days) - pending_days:
            entry.status = EntryStatus.PENDING
        else:
            entry.status = EntryStatus.OFF
        db.session.add(entry)

    db.session.commit()
    return tripsheet


# Fixtures for test data
@pytest.fixture
def admin_user(db_session):
    return AdminUserFactory()


@pytest.fixture
def driver_user(db_session):
    return DriverFactory()


@pytest.fixture
def approved_tripsheet(db_session, driver_user):
    """January 2025, 24 working days of 100 km from 08:00 to 21:00 (13 hours)"""
    tripsheet = TripsheetFactory(driver=driver_user, status=TripsheetStatus.APPROVED)
    return fill_tripsheet(tripsheet, working_days=24, daily_km=100,
                          starting_time='08:00', closing_time='21:00')


@pytest.fixture
def authenticated_client(app, driver_user):
    """Client with authenticated driver"""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['_user_id'] = str(driver_user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture
def admin_client(app, admin_user):
    """Client with authenticated admin"""
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['_user_id'] = str(admin_user.id)
        sess['_fresh'] = True
    return client
