"""
Shared fixtures for the alert engine tests.

Provides in-memory implementations of every collaborator interface so the
engine can be exercised without PostgreSQL, Redis or SMTP:

- InMemoryAlertStore: AlertStore with per-pair asyncio locks and
  injectable failures
- FakeMetricsProvider / FakeCampaignSource: canned snapshots and campaigns
- RecordingPublisher / FakeEmailSender / FakeChatPoster: channels that
  record what they were asked to deliver
- FakeClock: settable wall clock

Dates are anchored on 2024-05-10 12:00 UTC (day 10 of a 31-day month).
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from adwatch.detection.dispatcher import AlertDispatcher
from adwatch.errors import NotFoundError, PersistenceError, ProviderError
from adwatch.interfaces import (
    AlertStore,
    CampaignSource,
    ChatPoster,
    EmailSender,
    MetricsProvider,
    RealtimePublisher,
)
from adwatch.models.alerts import (
    Alert,
    AlertCandidate,
    AlertFilters,
    AlertPriority,
    AlertStats,
    AlertStatus,
    AlertType,
    Pagination,
    RoasDropDetail,
    status_fields,
)
from adwatch.models.campaign import Campaign, MetricsSnapshot


FIXED_NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


# ============================================================
# CLOCK
# ============================================================


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class StepTimer:
    """Monotonic timer that advances by ``step`` on every call."""

    def __init__(self, step: float = 1.0) -> None:
        self.value = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


# ============================================================
# ALERT STORE
# ============================================================


def unread_first(alerts: List[Alert]) -> List[Alert]:
    """List order of the SQL store: unread, then priority, then newest."""
    return sorted(
        alerts,
        key=lambda a: (a.is_read, -a.priority.rank, -a.created_at.timestamp()),
    )


class InMemoryAlertStore(AlertStore):
    """
    AlertStore kept in a dict.

    Attributes:
        alerts: Stored alerts by id.
        available: What ``ping`` answers.
        failures: Operation name -> exception raised by that operation.
        create_delay: Seconds ``create`` sleeps before writing.
    """

    def __init__(self) -> None:
        self.alerts: Dict[str, Alert] = {}
        self.available = True
        self.failures: Dict[str, Exception] = {}
        self.create_delay = 0.0
        self.lock_keys: List[Tuple[str, AlertType]] = []
        self._locks: Dict[Tuple[str, AlertType], asyncio.Lock] = defaultdict(asyncio.Lock)

    def fail(self, operation: str, error: Optional[Exception] = None) -> None:
        self.failures[operation] = error or PersistenceError(f"{operation} failed")

    def _check(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def add(self, alert: Alert) -> Alert:
        self.alerts[alert.id] = alert
        return alert

    async def ping(self) -> bool:
        return self.available

    @asynccontextmanager
    async def _locked(self, campaign_id: str, alert_type: AlertType) -> AsyncIterator["InMemoryAlertStore"]:
        async with self._locks[(campaign_id, alert_type)]:
            self.lock_keys.append((campaign_id, alert_type))
            yield self

    def locked(self, campaign_id: str, alert_type: AlertType) -> Any:
        return self._locked(campaign_id, alert_type)

    async def find_active_since(
        self,
        campaign_id: str,
        alert_type: AlertType,
        since: datetime,
    ) -> Optional[Alert]:
        self._check("find_active_since")
        matches = [
            a
            for a in self.alerts.values()
            if a.campaign_id == campaign_id
            and a.alert_type == alert_type
            and a.status == AlertStatus.ACTIVE
            and a.created_at >= since
        ]
        # Let concurrent callers interleave here
        await asyncio.sleep(0)
        return max(matches, key=lambda a: a.created_at) if matches else None

    async def create(self, alert: Alert) -> Alert:
        self._check("create")
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        self.alerts[alert.id] = alert
        return alert

    async def update(self, alert_id: str, fields: Dict[str, Any]) -> Alert:
        self._check("update")
        if alert_id not in self.alerts:
            raise NotFoundError(f"Alert not found: {alert_id}")
        updated = self.alerts[alert_id].model_copy(update=fields)
        self.alerts[alert_id] = updated
        return updated

    async def get(self, alert_id: str) -> Optional[Alert]:
        self._check("get")
        return self.alerts.get(alert_id)

    async def list(
        self,
        recipient_id: str,
        filters: AlertFilters,
        pagination: Pagination,
    ) -> Tuple[List[Alert], int]:
        self._check("list")
        matches = [
            a
            for a in self.alerts.values()
            if a.recipient_id == recipient_id
            and (filters.status is None or a.status == filters.status)
            and (filters.priority is None or a.priority == filters.priority)
            and (filters.alert_type is None or a.alert_type == filters.alert_type)
            and (filters.campaign_id is None or a.campaign_id == filters.campaign_id)
            and (filters.is_read is None or a.is_read == filters.is_read)
            and (filters.start_date is None or a.created_at >= filters.start_date)
            and (filters.end_date is None or a.created_at <= filters.end_date)
        ]
        ordered = unread_first(matches)
        start = pagination.offset
        return ordered[start:start + pagination.limit], len(ordered)

    async def update_status(self, alert_id: str, status: AlertStatus, changed_at: datetime) -> Alert:
        return await self.update(alert_id, status_fields(status, changed_at))

    async def mark_read(
        self,
        recipient_id: str,
        alert_ids: Optional[Sequence[str]],
        read_at: datetime,
    ) -> int:
        self._check("mark_read")
        wanted: Optional[Set[str]] = set(alert_ids) if alert_ids is not None else None
        count = 0
        for alert in list(self.alerts.values()):
            if alert.recipient_id != recipient_id or alert.is_read:
                continue
            if wanted is not None and alert.id not in wanted:
                continue
            self.alerts[alert.id] = alert.model_copy(update={"is_read": True, "read_at": read_at})
            count += 1
        return count

    async def delete(self, alert_id: str) -> None:
        self._check("delete")
        self.alerts.pop(alert_id, None)

    async def stats(self, recipient_id: str, since: datetime) -> AlertStats:
        self._check("stats")
        owned = [a for a in self.alerts.values() if a.recipient_id == recipient_id]
        recent = [a for a in owned if a.created_at >= since]
        by_status: Dict[str, int] = defaultdict(int)
        by_priority: Dict[str, int] = defaultdict(int)
        by_type: Dict[str, int] = defaultdict(int)
        for alert in recent:
            by_status[alert.status.value] += 1
            by_priority[alert.priority.value] += 1
            by_type[alert.alert_type.value] += 1
        return AlertStats(
            total_active=sum(1 for a in owned if a.status == AlertStatus.ACTIVE),
            unread=sum(1 for a in owned if not a.is_read),
            in_window=len(recent),
            by_status=dict(by_status),
            by_priority=dict(by_priority),
            by_type=dict(by_type),
        )

    async def purge_terminal(self, before: datetime) -> int:
        self._check("purge_terminal")
        doomed = [
            a.id
            for a in self.alerts.values()
            if a.status.is_terminal and (a.resolved_at or a.created_at) < before
        ]
        for alert_id in doomed:
            del self.alerts[alert_id]
        return len(doomed)

    async def recipients_with_alerts_since(self, since: datetime) -> List[str]:
        self._check("recipients_with_alerts_since")
        return sorted({a.recipient_id for a in self.alerts.values() if a.created_at >= since})

    async def list_since(self, recipient_id: str, since: datetime) -> List[Alert]:
        self._check("list_since")
        return sorted(
            (a for a in self.alerts.values() if a.recipient_id == recipient_id and a.created_at >= since),
            key=lambda a: a.created_at,
            reverse=True,
        )


# ============================================================
# DATA SOURCES
# ============================================================


class FakeMetricsProvider(MetricsProvider):
    """Serves canned snapshots per campaign."""

    def __init__(self) -> None:
        self.current: Dict[str, MetricsSnapshot] = {}
        self.previous: Dict[str, MetricsSnapshot] = {}
        self.weekly: Dict[str, List[MetricsSnapshot]] = {}
        self.failing: Set[str] = set()
        self.failing_operations: Set[str] = set()
        self.delay = 0.0
        self.calls: List[Tuple[str, str]] = []
        self.weeks_requested: List[int] = []

    def set(
        self,
        campaign_id: str,
        current: Optional[MetricsSnapshot] = None,
        previous: Optional[MetricsSnapshot] = None,
        weekly: Optional[List[MetricsSnapshot]] = None,
    ) -> None:
        self.current[campaign_id] = current or MetricsSnapshot()
        self.previous[campaign_id] = previous or MetricsSnapshot()
        self.weekly[campaign_id] = weekly or []

    async def _serve(self, operation: str, campaign_id: str) -> None:
        self.calls.append((operation, campaign_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if campaign_id in self.failing or operation in self.failing_operations:
            raise ProviderError(f"{operation} failed for {campaign_id}", campaign_id=campaign_id)

    async def get_current(self, campaign_id: str) -> MetricsSnapshot:
        await self._serve("get_current", campaign_id)
        return self.current.get(campaign_id, MetricsSnapshot())

    async def get_previous(self, campaign_id: str, lookback_days: int) -> MetricsSnapshot:
        await self._serve("get_previous", campaign_id)
        return self.previous.get(campaign_id, MetricsSnapshot())

    async def get_weekly(self, campaign_id: str, weeks: int) -> List[MetricsSnapshot]:
        self.weeks_requested.append(weeks)
        await self._serve("get_weekly", campaign_id)
        return self.weekly.get(campaign_id, [])[:weeks]


class FakeCampaignSource(CampaignSource):
    """Serves a fixed campaign list."""

    def __init__(self, campaigns: Optional[List[Campaign]] = None) -> None:
        self.campaigns: List[Campaign] = list(campaigns or [])
        self.fail = False

    async def list_eligible(self) -> List[Campaign]:
        if self.fail:
            raise ProviderError("campaign listing failed")
        return list(self.campaigns)

    async def get(self, campaign_id: str) -> Optional[Campaign]:
        return next((c for c in self.campaigns if c.id == campaign_id), None)


# ============================================================
# CHANNELS
# ============================================================


class RecordingPublisher(RealtimePublisher):
    """Records published events."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.error: Optional[Exception] = None

    async def publish(self, scope: str, event: str, payload: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.events.append((scope, event, payload))

    def scopes(self, event: str) -> List[str]:
        return [scope for scope, name, _ in self.events if name == event]


class FakeEmailSender(EmailSender):
    """Records alert emails and digests."""

    def __init__(self) -> None:
        self.sent: List[Alert] = []
        self.digests: List[Tuple[str, List[Alert]]] = []
        self.error: Optional[Exception] = None
        self.failing_recipients: Set[str] = set()
        self.delay = 0.0

    async def send_alert_email(self, alert: Alert, campaign: Optional[Campaign] = None) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(alert)

    async def send_daily_summary(self, recipient_id: str, alerts: List[Alert]) -> bool:
        if recipient_id in self.failing_recipients:
            raise RuntimeError(f"smtp refused {recipient_id}")
        if not alerts:
            return False
        self.digests.append((recipient_id, alerts))
        return True


class FakeChatPoster(ChatPoster):
    """Posts into a campaign -> conversation map."""

    def __init__(self, conversations: Optional[Dict[str, str]] = None) -> None:
        self.conversations: Dict[str, str] = dict(conversations or {})
        self.posted: List[Tuple[str, Alert]] = []
        self.error: Optional[Exception] = None

    async def post_system_message(self, campaign_id: str, alert: Alert) -> Optional[str]:
        if self.error is not None:
            raise self.error
        conversation_id = self.conversations.get(campaign_id)
        if conversation_id is None:
            return None
        self.posted.append((conversation_id, alert))
        return conversation_id


# ============================================================
# BUILDERS
# ============================================================


def make_campaign(campaign_id: str = "cmp-1", **overrides: Any) -> Campaign:
    """Campaign with a 3100 monthly budget owned by user-7."""
    data: Dict[str, Any] = {
        "id": campaign_id,
        "name": "Brand Search",
        "tenant_id": "acme",
        "recipient_id": "user-7",
        "monthly_budget": Decimal("3100"),
        "target_cpa": Decimal("50"),
    }
    data.update(overrides)
    return Campaign(**data)


def roas_snapshots(current_value: str = "180", previous_value: str = "300") -> Tuple[MetricsSnapshot, MetricsSnapshot]:
    """Current and previous snapshots with cost 100, so ROAS = value / 100."""
    return (
        MetricsSnapshot(cost=Decimal("100"), conversion_value=Decimal(current_value)),
        MetricsSnapshot(cost=Decimal("100"), conversion_value=Decimal(previous_value)),
    )


def make_candidate(
    alert_type: AlertType = AlertType.ROAS_DROP,
    current_value: str = "1.8",
    priority: AlertPriority = AlertPriority.HIGH,
) -> AlertCandidate:
    """ROAS-drop style candidate."""
    return AlertCandidate(
        alert_type=alert_type,
        priority=priority,
        title="ROAS drop: Brand Search",
        message="ROAS fell 40.0% versus the previous period.",
        threshold=Decimal("20"),
        current_value=Decimal(current_value),
        previous_value=Decimal("3.0"),
        magnitude=Decimal("40"),
        detail=RoasDropDetail(drop_percent=Decimal("40")),
    )


def make_alert(
    alert_id: str = "alert-1",
    recipient_id: str = "user-7",
    campaign_id: str = "cmp-1",
    **overrides: Any,
) -> Alert:
    """ACTIVE unread alert created at FIXED_NOW."""
    data: Dict[str, Any] = {
        "id": alert_id,
        "campaign_id": campaign_id,
        "recipient_id": recipient_id,
        "alert_type": AlertType.ROAS_DROP,
        "priority": AlertPriority.HIGH,
        "title": "ROAS drop: Brand Search",
        "message": "ROAS fell 40.0% versus the previous period.",
        "current_value": Decimal("1.8"),
        "previous_value": Decimal("3.0"),
        "threshold": Decimal("20"),
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    data.update(overrides)
    return Alert(**data)


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def provider() -> FakeMetricsProvider:
    return FakeMetricsProvider()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def chat_poster() -> FakeChatPoster:
    return FakeChatPoster({"cmp-1": "conv-9"})


@pytest.fixture
def dispatcher(
    store: InMemoryAlertStore,
    publisher: RecordingPublisher,
    email_sender: FakeEmailSender,
    chat_poster: FakeChatPoster,
) -> AlertDispatcher:
    return AlertDispatcher(
        store=store,
        publisher=publisher,
        email_sender=email_sender,
        chat_poster=chat_poster,
        channel_timeout=1.0,
    )
