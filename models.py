import json
from enum import Enum
from app import db
from flask_login import UserMixin
from sqlalchemy import func, CheckConstraint, UniqueConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from werkzeug.security import generate_password_hash, check_password_hash
from timezone_utils import get_ist_time_naive
from utils import format_serial_number

# Enums for better data integrity
class UserRole(Enum):
    ADMIN = 'admin'
    DRIVER = 'driver'

class VehicleStatus(Enum):
    ACTIVE = 'active'
    MAINTENANCE = 'maintenance'
    INACTIVE = 'inactive'

class TripsheetStatus(Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    APPROVED = 'approved'

class EntryStatus(Enum):
    PENDING = 'pending'
    WORKING = 'working'
    OFF = 'off'

class BillStatus(Enum):
    GENERATED = 'generated'
    SENT = 'sent'
    PAID = 'paid'

class SalaryStatus(Enum):
    PENDING = 'pending'
    GENERATED = 'generated'
    PAID = 'paid'

class AdvanceStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    PAID = 'paid'
    DEDUCTED = 'deducted'


# A clash on a unique serial number is retried once with a fresh count
NUMBER_ALLOCATION_ATTEMPTS = 2


def next_serial_number(number_column, prefix: str, year: int) -> str:
    """Next PREFIX-YYYY-NNNN number, counting the rows already issued for that year"""
    pattern = f"{prefix}-{year}-%"
    issued = db.session.query(func.count(number_column)).filter(number_column.like(pattern)).scalar() or 0
    return format_serial_number(prefix, year, issued + 1)


class CalculationMixin:
    """JSON text storage for a calculator result"""

    def get_calculation(self):
        return json.loads(self.calculation) if self.calculation else {}

    def set_calculation(self, calculation_dict):
        self.calculation = json.dumps(calculation_dict)


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.DRIVER, index=True)

    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    license_number = db.Column(db.String(30))
    assigned_vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), index=True)
    is_active_user = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    assigned_vehicle = db.relationship('Vehicle', foreign_keys=[assigned_vehicle_id])

    @property
    def is_active(self):
        return bool(self.is_active_user)

    @hybrid_property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f'<User {self.username}>'

class VehicleType(db.Model):
    """
    Billing configuration for a class of vehicle.
    base_amount and base_days may be left empty while a type is being set up;
    billing refuses to run until both are filled in.
    """
    __tablename__ = 'vehicle_types'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False, unique=True)
    code = db.Column(db.String(20), unique=True)

    base_amount = db.Column(db.Float)
    base_days = db.Column(db.Integer)
    extra_day_rate = db.Column(db.Float, default=0.0)
    extra_km_rate = db.Column(db.Float, default=0.0)
    base_hours_per_day = db.Column(db.Float, default=10.0)
    extra_hour_rate = db.Column(db.Float, default=0.0)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    vehicles = db.relationship('Vehicle', backref='vehicle_type', lazy=True)

    def __repr__(self):
        return f'<VehicleType {self.name}>'

class Vehicle(db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    vehicle_type_id = db.Column(db.Integer, db.ForeignKey('vehicle_types.id'), index=True)
    description = db.Column(db.String(255))
    route = db.Column(db.String(255))
    current_odometer = db.Column(db.Integer, default=0)
    status = db.Column(db.Enum(VehicleStatus), nullable=False, default=VehicleStatus.ACTIVE, index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    def __repr__(self):
        return f'<Vehicle {self.vehicle_number}>'

class Tripsheet(db.Model):
    __tablename__ = 'tripsheets'
    __table_args__ = (
        UniqueConstraint('vehicle_id', 'month', 'year', name='uq_tripsheet_vehicle_period'),
        CheckConstraint('month >= 1 AND month <= 12', name='ck_tripsheet_month'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tripsheet_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum(TripsheetStatus), nullable=False, default=TripsheetStatus.DRAFT, index=True)

    # Workflow
    submitted_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    rejected_at = db.Column(db.DateTime)
    rejected_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    rejection_reason = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    vehicle = db.relationship('Vehicle', backref='tripsheets')
    driver = db.relationship('User', foreign_keys=[driver_id], backref='tripsheets')
    approver = db.relationship('User', foreign_keys=[approved_by])
    entries = db.relationship('TripsheetEntry', backref='tripsheet', lazy=True,
                              order_by='TripsheetEntry.entry_date',
                              cascade='all, delete-orphan')

    @staticmethod
    def generate_number(year):
        return next_serial_number(Tripsheet.tripsheet_number, 'TS', year)

    @property
    def is_editable(self):
        return self.status == TripsheetStatus.DRAFT

    def __repr__(self):
        return f'<Tripsheet {self.tripsheet_number} {self.month}/{self.year}>'

class TripsheetEntry(db.Model):
    __tablename__ = 'tripsheet_entries'
    __table_args__ = (
        UniqueConstraint('tripsheet_id', 'entry_date', name='uq_tripsheet_entry_date'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tripsheet_id = db.Column(db.Integer, db.ForeignKey('tripsheets.id'), nullable=False, index=True)
    entry_date = db.Column(db.Date, nullable=False)
    day_of_week = db.Column(db.String(10), nullable=False)
    day_type = db.Column(db.String(10), nullable=False)  # working, saturday, sunday
    status = db.Column(db.Enum(EntryStatus), nullable=False, default=EntryStatus.PENDING)

    # Working-day fields, empty for off and pending days
    starting_km = db.Column(db.Integer)
    closing_km = db.Column(db.Integer)
    total_km = db.Column(db.Integer)
    starting_time = db.Column(db.String(5))
    closing_time = db.Column(db.String(5))
    total_hours = db.Column(db.Float)
    extra_hours = db.Column(db.Float)          # above 10h, billed to the client
    driver_extra_hours = db.Column(db.Float)   # above 12h, paid to the driver
    fuel_litres = db.Column(db.Float)
    fuel_amount = db.Column(db.Float)
    remarks = db.Column(db.String(500))

    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    WORKING_FIELDS = ('starting_km', 'closing_km', 'total_km', 'starting_time', 'closing_time',
                      'total_hours', 'extra_hours', 'driver_extra_hours', 'fuel_litres', 'fuel_amount')

    def clear_working_fields(self):
        for field in self.WORKING_FIELDS:
            setattr(self, field, None)

    def to_daily_entry(self):
        from calculators import DailyEntry
        return DailyEntry(
            entry_date=self.entry_date,
            status=self.status.value,
            day_type=self.day_type,
            total_km=self.total_km or 0,
            total_hours=self.total_hours or 0.0,
            extra_hours=self.extra_hours or 0.0,
            driver_extra_hours=self.driver_extra_hours or 0.0,
            fuel_litres=self.fuel_litres,
            fuel_amount=self.fuel_amount,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'date': self.entry_date.isoformat(),
            'dayOfWeek': self.day_of_week,
            'dayType': self.day_type,
            'status': self.status.value,
            'startingKm': self.starting_km,
            'closingKm': self.closing_km,
            'totalKm': self.total_km,
            'startingTime': self.starting_time,
            'closingTime': self.closing_time,
            'totalHours': self.total_hours,
            'extraHours': self.extra_hours,
            'driverExtraHours': self.driver_extra_hours,
            'fuelLitres': self.fuel_litres,
            'fuelAmount': self.fuel_amount,
            'remarks': self.remarks,
        }

    def __repr__(self):
        return f'<TripsheetEntry {self.entry_date} {self.status.value}>'

class Bill(CalculationMixin, db.Model):
    __tablename__ = 'bills'

    id = db.Column(db.Integer, primary_key=True)
    bill_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    # One bill per tripsheet, enforced by the database
    tripsheet_id = db.Column(db.Integer, db.ForeignKey('tripsheets.id'), nullable=False, unique=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    vehicle_type_id = db.Column(db.Integer, db.ForeignKey('vehicle_types.id'))
    month = db.Column(db.Integer, nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False, index=True)

    calculation = db.Column(db.Text, nullable=False)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.Enum(BillStatus), nullable=False, default=BillStatus.GENERATED, index=True)
    sent_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    generated_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    tripsheet = db.relationship('Tripsheet', backref=db.backref('bill', uselist=False))
    vehicle = db.relationship('Vehicle')
    driver = db.relationship('User', foreign_keys=[driver_id])
    vehicle_type = db.relationship('VehicleType')

    @staticmethod
    def generate_number(year):
        return next_serial_number(Bill.bill_number, 'BILL', year)

    def to_dict(self):
        return {
            'id': self.id,
            'billNumber': self.bill_number,
            'tripsheetId': self.tripsheet_id,
            'vehicleId': self.vehicle_id,
            'vehicleNumber': self.vehicle.vehicle_number if self.vehicle else None,
            'driverId': self.driver_id,
            'driverName': self.driver.name if self.driver else None,
            'vehicleType': self.vehicle_type.name if self.vehicle_type else None,
            'month': self.month,
            'year': self.year,
            'calculation': self.get_calculation(),
            'totalAmount': self.total_amount,
            'status': self.status.value,
            'sentAt': self.sent_at.isoformat() if self.sent_at else None,
            'paidAt': self.paid_at.isoformat() if self.paid_at else None,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Bill {self.bill_number} - ₹{self.total_amount}>'

class DriverSalary(CalculationMixin, db.Model):
    __tablename__ = 'driver_salaries'

    id = db.Column(db.Integer, primary_key=True)
    salary_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    # One salary per tripsheet, enforced by the database
    tripsheet_id = db.Column(db.Integer, db.ForeignKey('tripsheets.id'), nullable=False, unique=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False, index=True)
    month = db.Column(db.Integer, nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False, index=True)

    calculation = db.Column(db.Text, nullable=False)
    total_salary = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.Enum(SalaryStatus), nullable=False, default=SalaryStatus.GENERATED, index=True)
    paid_at = db.Column(db.DateTime)
    paid_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    generated_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    tripsheet = db.relationship('Tripsheet', backref=db.backref('salary', uselist=False))
    driver = db.relationship('User', foreign_keys=[driver_id])
    vehicle = db.relationship('Vehicle')
    advances = db.relationship('AdvanceSalary', backref='deducted_from_salary', lazy=True,
                               foreign_keys='AdvanceSalary.deducted_from_salary_id')

    @staticmethod
    def generate_number(year):
        return next_serial_number(DriverSalary.salary_number, 'SAL', year)

    def to_dict(self):
        return {
            'id': self.id,
            'salaryNumber': self.salary_number,
            'tripsheetId': self.tripsheet_id,
            'driverId': self.driver_id,
            'driverName': self.driver.name if self.driver else None,
            'vehicleId': self.vehicle_id,
            'vehicleNumber': self.vehicle.vehicle_number if self.vehicle else None,
            'month': self.month,
            'year': self.year,
            'calculation': self.get_calculation(),
            'totalSalary': self.total_salary,
            'status': self.status.value,
            'paidAt': self.paid_at.isoformat() if self.paid_at else None,
            'notes': self.notes,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<DriverSalary {self.salary_number} - ₹{self.total_salary}>'

class AdvanceSalary(db.Model):
    __tablename__ = 'advance_salaries'
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_advance_amount_positive'),
        CheckConstraint('requested_month >= 1 AND requested_month <= 12', name='ck_advance_month'),
    )

    id = db.Column(db.Integer, primary_key=True)
    advance_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey('vehicles.id'), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    requested_date = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    requested_month = db.Column(db.Integer, nullable=False, index=True)
    requested_year = db.Column(db.Integer, nullable=False, index=True)
    reason = db.Column(db.String(500))
    status = db.Column(db.Enum(AdvanceStatus), nullable=False, default=AdvanceStatus.PENDING, index=True)

    # Workflow
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    approved_at = db.Column(db.DateTime)
    paid_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    paid_at = db.Column(db.DateTime)
    rejected_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    rejected_at = db.Column(db.DateTime)
    rejection_reason = db.Column(db.String(500))

    # Set exactly once, when the advance is netted against a salary
    deducted_from_salary_id = db.Column(db.Integer, db.ForeignKey('driver_salaries.id'), index=True)
    deducted_at = db.Column(db.DateTime)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    driver = db.relationship('User', foreign_keys=[driver_id])
    vehicle = db.relationship('Vehicle')

    @staticmethod
    def generate_number(year):
        return next_serial_number(AdvanceSalary.advance_number, 'ADV', year)

    def to_dict(self):
        return {
            'id': self.id,
            'advanceNumber': self.advance_number,
            'driverId': self.driver_id,
            'driverName': self.driver.name if self.driver else None,
            'vehicleId': self.vehicle_id,
            'amount': self.amount,
            'requestedMonth': self.requested_month,
            'requestedYear': self.requested_year,
            'reason': self.reason,
            'status': self.status.value,
            'rejectionReason': self.rejection_reason,
            'deductedFromSalaryId': self.deducted_from_salary_id,
            'deductedAt': self.deducted_at.isoformat() if self.deducted_at else None,
            'notes': self.notes,
        }

    def __repr__(self):
        return f'<AdvanceSalary {self.advance_number} - ₹{self.amount}>'
