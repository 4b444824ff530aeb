"""
Unit tests for ValidationEngine — revocation precedence and scan gating.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import MagicMock

from dgc_verifier.adapters.memory import InMemoryProgressRepository, InMemoryRevocationStore
from dgc_verifier.domain.models import (
    CertificateStatement,
    CertificateType,
    ExemptionEntry,
    ScanMode,
    VaccinationEntry,
    ValidityDecision,
    ValidityReason,
    ValidityStatus,
    hash_uvci,
)
from dgc_verifier.domain.result import ErrorCode, Result
from dgc_verifier.validation.engine import ValidationEngine
from tests.support import make_catalog

NOW = datetime(2022, 3, 1, 12, 0, tzinfo=UTC)
UVCI = "URN:UVCI:01:IT:8F4A2C#Q"


def _exemption() -> CertificateStatement:
    return CertificateStatement(
        extended_type=CertificateType.VACCINE_EXEMPTION,
        country_code="IT",
        uvci=UVCI,
        exemption=ExemptionEntry(date(2022, 1, 1)),
    )


class TestRevocation:
    def test_valid_certificate(self) -> None:
        engine = ValidationEngine(make_catalog(), InMemoryRevocationStore(), clock=lambda: NOW)

        assert engine.validate(_exemption(), ScanMode.BASE) == ValidityDecision.valid()

    def test_revoked_hash_overrides_window(self) -> None:
        """
        GIVEN a certificate inside its window whose UVCI hash is in the store
        WHEN it is validated
        THEN it is not valid because it is revoked.
        """
        engine = ValidationEngine(make_catalog(), InMemoryRevocationStore([hash_uvci(UVCI)]))

        decision = engine.validate(_exemption(), ScanMode.BASE, now=NOW)

        assert decision == ValidityDecision.not_valid(ValidityReason.REVOKED)

    def test_blacklisted_uvci_overrides_window(self) -> None:
        catalog = make_catalog(("black_list_uvci", f"URN:UVCI:01:IT:OTHER;{UVCI}"))
        engine = ValidationEngine(catalog, InMemoryRevocationStore())

        decision = engine.validate(_exemption(), ScanMode.BASE, now=NOW)

        assert decision == ValidityDecision.not_valid(ValidityReason.BLACKLISTED)

    def test_store_failure_degrades_to_not_valid(self) -> None:
        store = MagicMock()
        store.contains.return_value = Result.failure(ErrorCode.DATABASE_ERROR, "connection refused")
        engine = ValidationEngine(make_catalog(), store)

        decision = engine.validate(_exemption(), ScanMode.BASE, now=NOW)

        assert decision.status is ValidityStatus.NOT_VALID

    def test_disabled_sync_skips_store_lookup(self) -> None:
        store = MagicMock()
        engine = ValidationEngine(make_catalog(("DRL_SYNC_ACTIVE", "false")), store)

        decision = engine.validate(_exemption(), ScanMode.BASE, now=NOW)

        assert decision.is_valid
        store.contains.assert_not_called()

    def test_home_country_comes_from_the_catalog(self) -> None:
        """
        GIVEN the catalog declares FR as home country
        WHEN an IT complete cycle past its 180 days is validated in reinforced mode
        THEN it is treated as foreign and falls into the extension window.
        """
        catalog = make_catalog(
            ("home_country", "FR"),
            ("vaccine_end_day_complete", "EU/1/20/1528", "180"),
            ("vaccine_end_day_complete_extended_EMA", "270"),
        )
        certificate = CertificateStatement(
            extended_type=CertificateType.VACCINE,
            country_code="IT",
            uvci=UVCI,
            vaccination=VaccinationEntry("EU/1/20/1528", "2/2", date(2021, 8, 1)),
        )
        engine = ValidationEngine(catalog, InMemoryRevocationStore())

        decision = engine.validate(certificate, ScanMode.REINFORCED, now=NOW)

        assert decision == ValidityDecision.partially_valid(ValidityReason.ADDITIONAL_CHECK_REQUIRED)


class TestScanAllowed:
    def test_blocked_until_first_sync(self) -> None:
        progress = InMemoryProgressRepository()
        engine = ValidationEngine(make_catalog(), InMemoryRevocationStore(), progress)

        assert engine.scan_allowed() is False

        progress.mark_fetched(NOW)

        assert engine.scan_allowed() is True

    def test_allowed_when_sync_disabled(self) -> None:
        engine = ValidationEngine(
            make_catalog(("DRL_SYNC_ACTIVE", "false")),
            InMemoryRevocationStore(),
            InMemoryProgressRepository(),
        )

        assert engine.scan_allowed() is True
