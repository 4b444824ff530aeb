"""
Shared fixtures for the dgc-verifier test suite.

Controllers are wired against the in-memory adapters and the scripted
gateway from tests.support; individual tests reconfigure the gateway.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dgc_verifier.adapters.memory import InMemoryProgressRepository, InMemoryRevocationStore
from dgc_verifier.sync.controller import SyncContext, SyncController
from dgc_verifier.validation.catalog import RuleCatalog
from tests.support import RecordingDelegate, ScriptedGateway, SwitchableProbe, make_catalog

NOW = datetime(2022, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def store() -> InMemoryRevocationStore:
    return InMemoryRevocationStore()


@pytest.fixture()
def progress_repository() -> InMemoryProgressRepository:
    return InMemoryProgressRepository()


@pytest.fixture()
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture()
def probe() -> SwitchableProbe:
    return SwitchableProbe(online=True)


@pytest.fixture()
def delegate() -> RecordingDelegate:
    return RecordingDelegate()


@pytest.fixture()
def catalog() -> RuleCatalog:
    return make_catalog(("DRL_SYNC_ACTIVE", "true"), ("MAX_RETRY", "1"))


@pytest.fixture()
def context(
    gateway: ScriptedGateway,
    store: InMemoryRevocationStore,
    progress_repository: InMemoryProgressRepository,
    probe: SwitchableProbe,
    catalog: RuleCatalog,
) -> SyncContext:
    return SyncContext(
        gateway=gateway,
        store=store,
        progress=progress_repository,
        connectivity=probe,
        catalog=catalog,
        clock=lambda: NOW,
    )


@pytest.fixture()
def controller(context: SyncContext, delegate: RecordingDelegate) -> SyncController:
    sync = SyncController(context)
    sync.initialize(delegate)
    return sync
