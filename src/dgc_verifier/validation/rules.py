"""
Validation rules — dispatch table of tagged rule variants plus their evaluation.

    select_rule(scan_mode, certificate_type, is_home_country) → Rule
    evaluate(rule, certificate, catalog, now)                 → ValidityDecision

Rules carry no behaviour of their own; `evaluate` matches on the variant
and applies the date window derived from the certificate entry and the
catalog offsets.

Catalog offsets (days unless noted, typed by vaccine product code or GENERIC):
  vaccine_{start,end}_day_{complete,not_complete}   per product
  vaccine_end_day_complete_extended_EMA            extension for foreign certificates
  recovery_cert_{start,end}_day                    default 0 / 180
  {molecular,rapid}_test_{start,end}_hours         default 0/72 and 0/48
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import StrEnum, unique
from typing import TypeAlias, TypeVar

from dgc_verifier.domain.models import (
    CertificateStatement,
    CertificateType,
    ExemptionEntry,
    RecoveryEntry,
    ScanMode,
    TestEntry,
    TestType,
    VaccinationEntry,
    ValidityDecision,
    ValidityReason,
    ValidityStatus,
)
from dgc_verifier.validation.catalog import GENERIC, RuleCatalog

W = TypeVar("W", date, datetime)

VACCINE_START_COMPLETE = "vaccine_start_day_complete"
VACCINE_END_COMPLETE = "vaccine_end_day_complete"
VACCINE_START_NOT_COMPLETE = "vaccine_start_day_not_complete"
VACCINE_END_NOT_COMPLETE = "vaccine_end_day_not_complete"
VACCINE_END_COMPLETE_EXTENDED = "vaccine_end_day_complete_extended_EMA"
RECOVERY_START = "recovery_cert_start_day"
RECOVERY_END = "recovery_cert_end_day"

_TEST_HOURS = {
    TestType.MOLECULAR: ("molecular_test_start_hours", "molecular_test_end_hours", 0, 72),
    TestType.RAPID: ("rapid_test_start_hours", "rapid_test_end_hours", 0, 48),
}

_DIGITS = re.compile(r"\d+")


# ─────────────────────── Rule variants ───────────────────────


@unique
class VaccinePolicy(StrEnum):
    STANDARD = "standard"
    """Complete and incomplete cycles inside their windows."""

    EXTENDED = "extended"
    """Foreign complete cycle: additional check in the extension window."""

    BOOSTER = "booster"
    """Only booster doses are fully valid; a complete primary cycle needs a check."""

    BOOSTER_EXTENDED = "booster_extended"
    """As BOOSTER, the primary cycle check running into the extension window."""

    COMPLETE_ONLY = "complete_only"


@dataclass(frozen=True, slots=True)
class AlwaysNotValid:
    reason: ValidityReason = ValidityReason.NOT_ACCEPTED


@dataclass(frozen=True, slots=True)
class VaccineRule:
    policy: VaccinePolicy = VaccinePolicy.STANDARD


@dataclass(frozen=True, slots=True)
class RecoveryRule:
    additional_check: bool = False


@dataclass(frozen=True, slots=True)
class TestRule:
    __test__ = False


@dataclass(frozen=True, slots=True)
class ExemptionRule:
    additional_check: bool = False


Rule: TypeAlias = AlwaysNotValid | VaccineRule | RecoveryRule | TestRule | ExemptionRule


_UNKNOWN = AlwaysNotValid(ValidityReason.MALFORMED)
_NOT_ACCEPTED = AlwaysNotValid()

_DISPATCH: dict[tuple[ScanMode, CertificateType], Rule] = {
    (ScanMode.BASE, CertificateType.UNKNOWN): _UNKNOWN,
    (ScanMode.BASE, CertificateType.VACCINE): VaccineRule(),
    (ScanMode.BASE, CertificateType.RECOVERY): RecoveryRule(),
    (ScanMode.BASE, CertificateType.TEST): TestRule(),
    (ScanMode.BASE, CertificateType.VACCINE_EXEMPTION): ExemptionRule(),
    (ScanMode.REINFORCED, CertificateType.UNKNOWN): _UNKNOWN,
    (ScanMode.REINFORCED, CertificateType.VACCINE): VaccineRule(),
    (ScanMode.REINFORCED, CertificateType.RECOVERY): RecoveryRule(),
    (ScanMode.REINFORCED, CertificateType.TEST): _NOT_ACCEPTED,
    (ScanMode.REINFORCED, CertificateType.VACCINE_EXEMPTION): ExemptionRule(),
    (ScanMode.BOOSTER, CertificateType.UNKNOWN): _UNKNOWN,
    (ScanMode.BOOSTER, CertificateType.VACCINE): VaccineRule(VaccinePolicy.BOOSTER),
    (ScanMode.BOOSTER, CertificateType.RECOVERY): RecoveryRule(additional_check=True),
    (ScanMode.BOOSTER, CertificateType.TEST): _NOT_ACCEPTED,
    (ScanMode.BOOSTER, CertificateType.VACCINE_EXEMPTION): ExemptionRule(additional_check=True),
    (ScanMode.ITALY_ENTRY, CertificateType.UNKNOWN): _UNKNOWN,
    (ScanMode.ITALY_ENTRY, CertificateType.VACCINE): VaccineRule(VaccinePolicy.COMPLETE_ONLY),
    (ScanMode.ITALY_ENTRY, CertificateType.RECOVERY): RecoveryRule(),
    (ScanMode.ITALY_ENTRY, CertificateType.TEST): TestRule(),
    (ScanMode.ITALY_ENTRY, CertificateType.VACCINE_EXEMPTION): _NOT_ACCEPTED,
}

# vaccine certificates issued abroad
_FOREIGN_VACCINE: dict[ScanMode, Rule] = {
    ScanMode.REINFORCED: VaccineRule(VaccinePolicy.EXTENDED),
    ScanMode.BOOSTER: VaccineRule(VaccinePolicy.BOOSTER_EXTENDED),
}


def select_rule(scan_mode: ScanMode, certificate_type: CertificateType, is_home_country: bool) -> Rule:
    if certificate_type is CertificateType.VACCINE and not is_home_country:
        foreign = _FOREIGN_VACCINE.get(scan_mode)
        if foreign is not None:
            return foreign
    return _DISPATCH[(scan_mode, certificate_type)]


# ─────────────────────── Window primitive ───────────────────────


def check_window(
    now: W,
    start: W,
    end: W | None = None,
    extended_end: W | None = None,
    strict: bool = False,
) -> ValidityDecision:
    """
    Place `now` relative to a validity window.

    before start           → partially_valid / not_yet_valid
    start..end             → valid
    end..extended_end      → partially_valid / additional_check_required
    after                  → not_valid / expired

    `strict` excludes both boundaries of the start..end range.
    """
    if now < start or (strict and now == start):
        return ValidityDecision.partially_valid(ValidityReason.NOT_YET_VALID)
    if end is None or now < end or (not strict and now == end):
        return ValidityDecision.valid()
    if extended_end is not None and now <= extended_end:
        return ValidityDecision.partially_valid(ValidityReason.ADDITIONAL_CHECK_REQUIRED)
    return ValidityDecision.not_valid(ValidityReason.EXPIRED)


def parse_doses(dose_description: str) -> tuple[int, int] | None:
    """"2/2", "Dose 1 of 2" → (current, total); None without two numbers."""
    numbers = [int(n) for n in _DIGITS.findall(dose_description)]
    if len(numbers) < 2:
        return None
    return numbers[0], numbers[1]


# ─────────────────────── Evaluation ───────────────────────


def evaluate(
    rule: Rule,
    certificate: CertificateStatement,
    catalog: RuleCatalog,
    now: datetime,
) -> ValidityDecision:
    malformed = ValidityDecision.not_valid(ValidityReason.MALFORMED)
    match rule:
        case AlwaysNotValid(reason):
            return ValidityDecision.not_valid(reason)
        case VaccineRule(policy):
            if certificate.vaccination is None:
                return malformed
            return _evaluate_vaccine(policy, certificate.vaccination, catalog, now)
        case RecoveryRule(additional_check):
            if certificate.recovery is None:
                return malformed
            return _needs_check(_evaluate_recovery(certificate.recovery, catalog, now), additional_check)
        case TestRule():
            if certificate.test is None:
                return malformed
            return _evaluate_test(certificate.test, catalog, now)
        case ExemptionRule(additional_check):
            if certificate.exemption is None:
                return malformed
            return _needs_check(_evaluate_exemption(certificate.exemption, now), additional_check)
    return malformed


def _evaluate_vaccine(
    policy: VaccinePolicy,
    entry: VaccinationEntry,
    catalog: RuleCatalog,
    now: datetime,
) -> ValidityDecision:
    doses = parse_doses(entry.dose_description)
    if doses is None:
        return ValidityDecision.not_valid(ValidityReason.MALFORMED)
    current, total = doses
    product = entry.medicinal_product
    if product not in catalog.types_for(VACCINE_END_COMPLETE):
        return ValidityDecision.not_valid(ValidityReason.UNRECOGNIZED_PRODUCT)

    is_last_dose = current == total
    is_booster = current > total or (is_last_dose and total >= 3)
    booster_policy = policy in (VaccinePolicy.BOOSTER, VaccinePolicy.BOOSTER_EXTENDED)

    def day(offset: int) -> datetime:
        return datetime.combine(entry.vaccination_date + timedelta(days=offset), time.min, now.tzinfo)

    # booster scans read over-count doses on the complete row; every other policy uses the last-dose row
    if not is_last_dose and not (booster_policy and is_booster):
        if booster_policy or policy is VaccinePolicy.COMPLETE_ONLY:
            return ValidityDecision.not_valid(ValidityReason.NOT_ACCEPTED)
        start = day(_offset(catalog, VACCINE_START_NOT_COMPLETE, product))
        end = day(_offset(catalog, VACCINE_END_NOT_COMPLETE, product))
        return check_window(now, start, end, strict=True)

    start = day(_offset(catalog, VACCINE_START_COMPLETE, product))
    end = day(_offset(catalog, VACCINE_END_COMPLETE, product))
    extension = catalog.get_int(VACCINE_END_COMPLETE_EXTENDED, product)
    if extension is None:
        extension = catalog.get_int(VACCINE_END_COMPLETE_EXTENDED, GENERIC)
    extended_end = day(extension) if extension is not None else None

    match policy:
        case VaccinePolicy.EXTENDED:
            return check_window(now, start, end, extended_end, strict=True)
        case VaccinePolicy.BOOSTER if not is_booster:
            return _needs_check(check_window(now, start, end, strict=True), True)
        case VaccinePolicy.BOOSTER_EXTENDED if not is_booster:
            return _needs_check(check_window(now, start, end, extended_end, strict=True), True)
        case _:
            return check_window(now, start, end, strict=True)


def _evaluate_recovery(entry: RecoveryEntry, catalog: RuleCatalog, now: datetime) -> ValidityDecision:
    start = entry.valid_from + timedelta(days=_offset(catalog, RECOVERY_START, GENERIC))
    end = min(
        entry.valid_until,
        entry.valid_from + timedelta(days=_offset(catalog, RECOVERY_END, GENERIC, default=180)),
    )
    return check_window(now.date(), start, end)


def _evaluate_test(entry: TestEntry, catalog: RuleCatalog, now: datetime) -> ValidityDecision:
    if entry.detected:
        return ValidityDecision.not_valid(ValidityReason.NOT_ACCEPTED)
    start_name, end_name, start_default, end_default = _TEST_HOURS[entry.test_type]
    start = entry.sample_collected_at + timedelta(hours=_offset(catalog, start_name, GENERIC, start_default))
    end = entry.sample_collected_at + timedelta(hours=_offset(catalog, end_name, GENERIC, end_default))
    return check_window(now, start, end)


def _evaluate_exemption(entry: ExemptionEntry, now: datetime) -> ValidityDecision:
    return check_window(now.date(), entry.valid_from, entry.valid_until)


def _needs_check(decision: ValidityDecision, additional_check: bool) -> ValidityDecision:
    """Downgrade a valid decision when the scan mode only partially accepts the certificate."""
    if additional_check and decision.status is ValidityStatus.VALID:
        return ValidityDecision.partially_valid(ValidityReason.ADDITIONAL_CHECK_REQUIRED)
    return decision


def _offset(catalog: RuleCatalog, name: str, type: str, default: int = 0) -> int:
    value = catalog.get_int(name, type, default=default)
    return default if value is None else value
