"""
Billing and salary calculation engine

Pure functions that turn a month of daily tripsheet entries into a client bill
and a driver salary. Nothing in this module touches the database: services load
entries and billing rules, call these functions and persist the results.
"""

from dataclasses import dataclass, asdict, replace
from datetime import date
from typing import Dict, Iterable, List, Optional

from services.exceptions import ConfigurationError
from utils.number_to_words import number_to_indian_words
from utils.time_calculator import BILLING_BASE_HOURS_PER_DAY, get_day_type, month_dates

# Every billed base day includes 100 km
BASE_KMS_PER_DAY = 100


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _to_camel_dict(obj) -> Dict:
    return {_camel(key): value for key, value in asdict(obj).items()}


def _from_camel_dict(cls, data: Dict):
    kwargs = {}
    for key, value in (data or {}).items():
        snake = ''.join('_' + c.lower() if c.isupper() else c for c in key)
        if snake in cls.__dataclass_fields__:
            kwargs[snake] = value
    return cls(**kwargs)


@dataclass
class DailyEntry:
    """One calendar day of a tripsheet, as seen by the aggregator"""
    entry_date: date
    status: str = 'pending'          # pending, working, off
    day_type: str = 'working'        # working, saturday, sunday
    total_km: int = 0
    total_hours: float = 0.0
    extra_hours: float = 0.0         # above the 10h billing threshold
    driver_extra_hours: float = 0.0  # above the 12h salary threshold
    fuel_litres: Optional[float] = None
    fuel_amount: Optional[float] = None

    @property
    def is_working(self) -> bool:
        return self.status == 'working'


@dataclass
class TripsheetSummary:
    total_working_days: int = 0
    total_off_days: int = 0
    total_pending_days: int = 0
    total_kms: float = 0
    total_hours: float = 0.0
    total_extra_hours: float = 0.0
    total_driver_extra_hours: float = 0.0
    total_fuel_litres: float = 0.0
    total_fuel_amount: float = 0.0

    @property
    def total_days(self) -> int:
        return self.total_working_days + self.total_off_days + self.total_pending_days

    def to_dict(self) -> Dict:
        return _to_camel_dict(self)


@dataclass
class BillingRules:
    """
    Billing configuration of a vehicle type.

    base_amount and base_days have no default: a type without them cannot be
    billed. The remaining rates fall back to zero.
    """
    base_amount: Optional[float]
    base_days: Optional[int]
    extra_day_rate: float = 0.0
    extra_km_rate: float = 0.0
    base_hours_per_day: float = BILLING_BASE_HOURS_PER_DAY
    extra_hour_rate: float = 0.0
    vehicle_type_name: Optional[str] = None


@dataclass
class BillingCalculation:
    total_working_days: int
    base_days: int
    extra_days: int
    base_amount: float
    extra_day_rate: float
    extra_days_amount: float

    total_kms: float
    base_kms: int
    extra_kms: float
    extra_km_rate: float
    extra_kms_amount: float

    total_hours: float
    base_hours_per_day: float
    total_base_hours: float
    total_extra_hours: float
    extra_hour_rate: float
    extra_hours_amount: float

    sub_total: float
    adjustments: float
    total_amount: float
    amount_in_words: str

    def to_dict(self) -> Dict:
        return _to_camel_dict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'BillingCalculation':
        return _from_camel_dict(cls, data)


@dataclass
class SalaryCalculation:
    base_salary: float
    base_days: int
    total_working_days: int
    extra_days: int
    extra_day_rate: float
    extra_days_amount: float
    total_hours: float
    total_driver_extra_hours: float
    extra_hour_rate: float
    extra_hours_amount: float
    total_salary: float
    amount_in_words: str
    advance_deduction: float = 0.0
    gross_salary: Optional[float] = None

    def to_dict(self) -> Dict:
        return _to_camel_dict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'SalaryCalculation':
        return _from_camel_dict(cls, data)


class SalaryRules:
    """Fixed driver pay rules"""
    BASE_SALARY = 20000
    BASE_DAYS = 22
    EXTRA_DAY_RATE = 909
    EXTRA_HOUR_RATE = 80


def fill_missing_days(entries: Iterable[DailyEntry], month: int, year: int) -> List[DailyEntry]:
    """
    Return exactly one entry per calendar day of the month, in date order.
    Days without an entry are added as pending. Entries dated outside the
    month are dropped; for a repeated date the first entry wins.
    """
    by_date: Dict[date, DailyEntry] = {}
    for entry in entries:
        by_date.setdefault(entry.entry_date, entry)

    return [
        by_date.get(day) or DailyEntry(entry_date=day, status='pending', day_type=get_day_type(day))
        for day in month_dates(month, year)
    ]


def recompute_summary(entries: Iterable[DailyEntry], month: Optional[int] = None,
                      year: Optional[int] = None) -> TripsheetSummary:
    """
    Fold a month of entries into a TripsheetSummary.

    When month and year are given the list is first completed with pending
    days, so the three day counts always add up to the days in the month.
    Hours are already rounded to one decimal per entry; the sums are only
    rounded to strip floating point noise.
    """
    if month is not None and year is not None:
        entries = fill_missing_days(entries, month, year)

    summary = TripsheetSummary()
    kms = 0
    hours = extra = driver_extra = litres = fuel_amount = 0.0

    for entry in entries:
        if entry.status == 'working':
            summary.total_working_days += 1
            kms += entry.total_km or 0
            hours += entry.total_hours or 0
            extra += entry.extra_hours or 0
            driver_extra += entry.driver_extra_hours or 0
            litres += entry.fuel_litres or 0
            fuel_amount += entry.fuel_amount or 0
        elif entry.status == 'off':
            summary.total_off_days += 1
        else:
            summary.total_pending_days += 1

    summary.total_kms = kms
    summary.total_hours = round(hours, 1)
    summary.total_extra_hours = round(extra, 1)
    summary.total_driver_extra_hours = round(driver_extra, 1)
    summary.total_fuel_litres = round(litres, 2)
    summary.total_fuel_amount = round(fuel_amount, 2)
    return summary


def calculate_billing(summary: TripsheetSummary, rules: Optional[BillingRules]) -> BillingCalculation:
    """
    Client invoice for one approved tripsheet.

    Raises ConfigurationError when the rules are missing or have no base
    amount or base days; those two are never defaulted.
    """
    if rules is None:
        raise ConfigurationError("Billing rules are not configured for this vehicle type")
    if rules.base_amount is None:
        raise ConfigurationError(
            f"Base amount is not configured for vehicle type {rules.vehicle_type_name or ''}".strip(),
            field='baseAmount'
        )
    if rules.base_days is None:
        raise ConfigurationError(
            f"Base days are not configured for vehicle type {rules.vehicle_type_name or ''}".strip(),
            field='baseDays'
        )

    extra_day_rate = rules.extra_day_rate or 0
    extra_km_rate = rules.extra_km_rate or 0
    extra_hour_rate = rules.extra_hour_rate or 0
    base_hours_per_day = rules.base_hours_per_day or BILLING_BASE_HOURS_PER_DAY

    working_days = summary.total_working_days
    extra_days = max(0, working_days - rules.base_days)
    extra_days_amount = round(extra_days * extra_day_rate, 2)

    base_kms = rules.base_days * BASE_KMS_PER_DAY
    extra_kms = max(0, summary.total_kms - base_kms)
    extra_kms_amount = round(extra_kms * extra_km_rate, 2)

    total_extra_hours = summary.total_extra_hours
    extra_hours_amount = round(total_extra_hours * extra_hour_rate, 2)

    sub_total = round(rules.base_amount + extra_days_amount + extra_kms_amount + extra_hours_amount, 2)
    adjustments = 0
    total_amount = sub_total + adjustments

    return BillingCalculation(
        total_working_days=working_days,
        base_days=rules.base_days,
        extra_days=extra_days,
        base_amount=rules.base_amount,
        extra_day_rate=extra_day_rate,
        extra_days_amount=extra_days_amount,
        total_kms=summary.total_kms,
        base_kms=base_kms,
        extra_kms=extra_kms,
        extra_km_rate=extra_km_rate,
        extra_kms_amount=extra_kms_amount,
        total_hours=summary.total_hours,
        base_hours_per_day=base_hours_per_day,
        total_base_hours=round(working_days * base_hours_per_day, 1),
        total_extra_hours=total_extra_hours,
        extra_hour_rate=extra_hour_rate,
        extra_hours_amount=extra_hours_amount,
        sub_total=sub_total,
        adjustments=adjustments,
        total_amount=total_amount,
        amount_in_words=number_to_indian_words(total_amount),
    )


def apply_bill_adjustments(calculation: BillingCalculation, adjustments: float) -> BillingCalculation:
    """Signed admin adjustment on top of the calculated sub total"""
    total_amount = round(calculation.sub_total + adjustments, 2)
    return replace(
        calculation,
        adjustments=adjustments,
        total_amount=total_amount,
        amount_in_words=number_to_indian_words(total_amount),
    )


def calculate_driver_salary(summary: TripsheetSummary) -> SalaryCalculation:
    """Driver pay from the salary-side (12h) overage only"""
    working_days = summary.total_working_days
    extra_days = max(0, working_days - SalaryRules.BASE_DAYS)
    extra_days_amount = extra_days * SalaryRules.EXTRA_DAY_RATE

    driver_extra_hours = summary.total_driver_extra_hours
    extra_hours_amount = round(driver_extra_hours * SalaryRules.EXTRA_HOUR_RATE, 2)

    total_salary = round(SalaryRules.BASE_SALARY + extra_days_amount + extra_hours_amount, 2)

    return SalaryCalculation(
        base_salary=SalaryRules.BASE_SALARY,
        base_days=SalaryRules.BASE_DAYS,
        total_working_days=working_days,
        extra_days=extra_days,
        extra_day_rate=SalaryRules.EXTRA_DAY_RATE,
        extra_days_amount=extra_days_amount,
        total_hours=summary.total_hours,
        total_driver_extra_hours=driver_extra_hours,
        extra_hour_rate=SalaryRules.EXTRA_HOUR_RATE,
        extra_hours_amount=extra_hours_amount,
        total_salary=total_salary,
        amount_in_words=number_to_indian_words(total_salary),
    )


def apply_advance_deduction(calculation: SalaryCalculation, total_advances: float) -> SalaryCalculation:
    """
    Net advances against a salary: final = max(0, gross - advances).
    The gross figure is kept so the deduction can be re-applied with a larger
    total without compounding.
    """
    gross = calculation.gross_salary if calculation.gross_salary is not None else calculation.total_salary
    total_advances = total_advances or 0
    final_salary = max(0, round(gross - total_advances, 2))
    return replace(
        calculation,
        gross_salary=gross,
        advance_deduction=total_advances,
        total_salary=final_salary,
        amount_in_words=number_to_indian_words(final_salary),
    )
