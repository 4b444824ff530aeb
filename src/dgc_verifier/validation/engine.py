"""
ValidationEngine — turn a decoded certificate into a validity decision.

    blacklisted UVCI          → not_valid / blacklisted
    revoked UVCI hash         → not_valid / revoked
    otherwise                 → select_rule(...) → evaluate(...)

Read-only: the engine never waits on a running synchronization; it reads
whatever the store committed last.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from dgc_verifier.domain.models import (
    NEVER_FETCHED,
    CertificateStatement,
    ScanMode,
    ValidityDecision,
    ValidityReason,
    ValidityStatus,
)
from dgc_verifier.domain.ports import ProgressRepository, RevocationStore
from dgc_verifier.validation.catalog import RuleCatalog
from dgc_verifier.validation.rules import evaluate, select_rule

log = structlog.get_logger()


class ValidationEngine:
    def __init__(
        self,
        catalog: RuleCatalog,
        store: RevocationStore,
        progress: ProgressRepository | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._catalog = catalog
        self._store = store
        self._progress = progress
        self._clock = clock

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def validate(
        self,
        certificate: CertificateStatement,
        scan_mode: ScanMode,
        now: datetime | None = None,
    ) -> ValidityDecision:
        now = now or self._clock()
        decision = self._revocation_check(certificate)
        if decision is None:
            is_home = certificate.country_code.upper() == self._catalog.home_country
            rule = select_rule(scan_mode, certificate.extended_type, is_home)
            decision = evaluate(rule, certificate, self._catalog, now)
        log.info(
            "validation.decided",
            scan_mode=scan_mode.value,
            certificate_type=certificate.extended_type.value,
            status=decision.status.value,
            reason=decision.reason.value if decision.reason else None,
        )
        return decision

    def scan_allowed(self) -> bool:
        """False while synchronization is enabled but has never completed."""
        if not self._catalog.sync_enabled or self._progress is None:
            return True
        return self._progress.last_fetch().get_or_else(NEVER_FETCHED) != NEVER_FETCHED

    def _revocation_check(self, certificate: CertificateStatement) -> ValidityDecision | None:
        if certificate.uvci in self._catalog.blacklist:
            return ValidityDecision.not_valid(ValidityReason.BLACKLISTED)
        if not self._catalog.sync_enabled:
            return None
        revoked = self._store.contains(certificate.hashed_uvci)
        if revoked.is_failure():
            log.error("validation.revocation_lookup_failed", failure=str(revoked.error()))
            return ValidityDecision(ValidityStatus.NOT_VALID)
        if revoked.value():
            return ValidityDecision.not_valid(ValidityReason.REVOKED)
        return None
