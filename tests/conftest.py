"""Shared fixtures and in-memory fakes for the pipeline tests."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from leadsync.application.retry import RetryPolicy
from leadsync.domain.entities.credential import EncryptedToken, OAuthCredential, TokenGrant
from leadsync.domain.entities.inbound_message import FeedRecord, build_address
from leadsync.domain.models import (
    ColumnSpec,
    DestinationConfig,
    SemanticType,
    TenantProfile,
    ThreadState,
    TriggerPolicy,
    column_index,
)
from leadsync.infrastructure.google.crypto import TokenCipher

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TENANT = "tenant-1"
THREAD = "+15551234567"


# ============================================================================
# Fakes
# ============================================================================


class FakeChatClient:
    """Chat client returning scripted replies (or raising scripted errors) in order."""

    def __init__(self, replies: list[Any] | None = None, default: str = "{}"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict[str, str]] = []

    def complete(self, model: str, system: str, user: str) -> str:
        self.calls.append({"model": model, "system": system, "user": user})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(model, system, user)
        return reply


_A1 = re.compile(r"^([A-Z]+)(\d*)(?::([A-Z]+)(\d*))?$")


def _split_range(range_: str) -> tuple[str, str]:
    sheet, _, a1 = range_.rpartition("!")
    return sheet.strip("'"), a1


class InMemoryTable:
    """Destination table keeping rows per table id. Records every call."""

    def __init__(self):
        self.rows: dict[str, list[list[str]]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.errors: dict[str, Exception] = {}

    def seed(self, table_id: str, rows: list[list[str]]) -> None:
        self.rows[table_id] = [list(r) for r in rows]

    def _check(self, table_id: str) -> None:
        if table_id in self.errors:
            raise self.errors[table_id]

    def get_range(self, table_id: str, range_: str) -> list[list[Any]]:
        self.calls.append(("get", table_id, range_))
        self._check(table_id)
        _, a1 = _split_range(range_)
        match = _A1.match(a1)
        col = column_index(match.group(1))
        rows = self.rows.get(table_id, [])
        return [[row[col]] if col < len(row) else [] for row in rows]

    def append(self, table_id: str, range_: str, values: list[list[Any]]) -> None:
        self.calls.append(("append", table_id, range_))
        self._check(table_id)
        for row in values:
            self.rows.setdefault(table_id, []).append(["" if v is None else v for v in row])

    def update(self, table_id: str, range_: str, values: list[list[Any]]) -> None:
        self.calls.append(("update", table_id, range_))
        self._check(table_id)
        _, a1 = _split_range(range_)
        match = _A1.match(a1)
        row_number = int(match.group(2))
        target = self.rows[table_id][row_number - 1]
        for position, value in enumerate(values[0]):
            if value is None:
                continue
            while len(target) <= position:
                target.append("")
            target[position] = value

    def writes(self) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in ("append", "update")]


class InMemoryStore:
    """Tenant, thread, credential and status store in plain dicts."""

    def __init__(self):
        self.tenants: dict[str, TenantProfile] = {}
        self.threads: dict[tuple[str, str], ThreadState] = {}
        self.credentials: dict[str, OAuthCredential] = {}
        self.statuses: dict[str, list[dict[str, Any]]] = {}
        self.fail_status_writes = False

    def get_tenant(self, tenant_id: str) -> TenantProfile | None:
        return self.tenants.get(tenant_id)

    def get_thread(self, tenant_id: str, thread_key: str) -> ThreadState | None:
        return self.threads.get((tenant_id, thread_key))

    def load(self, tenant_id: str) -> OAuthCredential | None:
        return self.credentials.get(tenant_id)

    def save(self, credential: OAuthCredential) -> None:
        self.credentials[credential.tenant_id] = credential

    def save_access_token(self, tenant_id: str, access_token: EncryptedToken, expires_at: datetime) -> None:
        current = self.credentials[tenant_id]
        self.credentials[tenant_id] = OAuthCredential(
            tenant_id=tenant_id,
            access_token=access_token,
            refresh_token=current.refresh_token,
            expires_at=expires_at,
        )

    def write_status(self, ref: str, status: dict[str, Any], processed_at: datetime) -> None:
        if self.fail_status_writes:
            raise RuntimeError("store unavailable")
        # Round-trip through JSON like a real document store would
        self.statuses.setdefault(ref, []).append(json.loads(json.dumps(status)))


class FakeTokenProvider:
    """OAuth provider returning sequential access tokens."""

    def __init__(self, expires_in: int = 3600, error: Exception | None = None):
        self.expires_in = expires_in
        self.error = error
        self.calls: list[str] = []

    def refresh(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return TokenGrant(access_token=f"access-{len(self.calls)}", expires_in=self.expires_in)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ============================================================================
# Builders
# ============================================================================


def make_columns() -> list[ColumnSpec]:
    return [
        ColumnSpec(id="name", display_name="Customer Name", semantic_type=SemanticType.NAME),
        ColumnSpec(id="product", display_name="Product", semantic_type=SemanticType.PRODUCT),
        ColumnSpec(id="phone", display_name="Phone Number", semantic_type=SemanticType.PHONE),
        ColumnSpec(id="timestamp", display_name="Timestamp", semantic_type=SemanticType.DATE),
    ]


def make_destination(
    destination_id: str = "sheet-1",
    trigger: TriggerPolicy = TriggerPolicy.ON_FIRST_CONTACT,
    **overrides: Any,
) -> DestinationConfig:
    data: dict[str, Any] = {
        "destination_id": destination_id,
        "columns": make_columns(),
        "trigger_policy": trigger,
    }
    data.update(overrides)
    return DestinationConfig(**data)


def make_record(
    text: str = "Hi, I'm Sara, interested in the blue sofa, number +15551234567",
    sender: str | None = "user",
    tenant_id: str = TENANT,
    thread_key: str = THREAD,
    message_id: str = "msg-1",
    is_test: bool = False,
    processed: bool = False,
    created_at: datetime | None = None,
    address: str | None = None,
) -> FeedRecord:
    return FeedRecord(
        ref=f"ref-{message_id}",
        address=address or build_address(tenant_id, thread_key, message_id),
        text=text,
        sender=sender,
        is_test=is_test,
        processed=processed,
        created_at=created_at or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def sara_reply(*_: Any) -> str:
    return json.dumps({"name": "Sara", "product": "blue sofa", "phone": "+15551234567", "timestamp": "N/A"})


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(TEST_KEY)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def table() -> InMemoryTable:
    return InMemoryTable()


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy.with_fallback("primary-model", "fallback-model")


@pytest.fixture
def seed_credential(store: InMemoryStore, cipher: TokenCipher, clock: FrozenClock) -> Callable[..., OAuthCredential]:
    """Store an encrypted credential expiring ``expires_in`` seconds from the clock."""

    def _seed(
        tenant_id: str = TENANT,
        access_token: str = "access-0",
        refresh_token: str = "refresh-0",
        expires_in: int = 3600,
    ) -> OAuthCredential:
        credential = OAuthCredential(
            tenant_id=tenant_id,
            access_token=cipher.encrypt(access_token),
            refresh_token=cipher.encrypt(refresh_token),
            expires_at=clock() + timedelta(seconds=expires_in),
        )
        store.save(credential)
        return credential

    return _seed
