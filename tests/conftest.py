"""Shared fixtures: an in-memory record store and a static identity provider."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from rpfaas_review.store.service import RecordStore
from rpfaas_review.workflow.schema import Principal, RecordKind, RecordStatus, Role

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_store() -> RecordStore:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = RecordStore(engine=engine)
    store.initialize()
    return store


def add_user(
    store: RecordStore,
    user_id: str,
    role: Role | str,
    municipality: str | None = None,
    full_name: str | None = None,
    email: str | None = None,
):
    return store.save_user(
        user_id,
        role=role,
        municipality=municipality,
        full_name=full_name,
        email=email or f"{user_id}@example.gov.ph",
    )


def add_record(
    store: RecordStore,
    kind: RecordKind = RecordKind.BUILDING,
    status: RecordStatus = RecordStatus.DRAFT,
    municipality: str | None = "Bontoc",
    submitted_minutes: int | None = None,
    **fields,
):
    submitted_at = None
    if submitted_minutes is not None:
        submitted_at = T0 + timedelta(minutes=submitted_minutes)
    return store.create_record(
        kind,
        status=status,
        location_municipality=municipality,
        submitted_at=submitted_at,
        **fields,
    )


class StaticIdentityProvider:
    """Maps fixed bearer tokens to principals."""

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self.tokens = dict(tokens or {})
        self.closed = False

    async def get_principal(self, access_token: str) -> Principal | None:
        user_id = self.tokens.get(access_token)
        return Principal(id=user_id) if user_id else None

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> RecordStore:
    return make_store()
