"""
============================================================================
Realtime Distributor - Delta Push to Connected Subscribers
============================================================================

Reliability Level: L6 Critical
Side Effects: Sends JSON frames to subscriber sockets

SUBSCRIBER LIFECYCLE:
    CONNECTED -> (initial or error frame sent) -> SUBSCRIBED -> DISCONNECTED

    On connect the current page is pushed as an "initial" message. If that
    page cannot be produced an "error" message goes to that connection only.
    Either way the session becomes SUBSCRIBED once that first frame is out.

    Broadcasts (update, refresh) only reach SUBSCRIBED sessions, so a tick
    that runs while a connect is still fetching its page never puts an
    update ahead of that subscriber's first frame.

TICK LOOP:
    Every interval (default 5s):
    - No subscribers: skip entirely, no upstream cost
    - Otherwise read one page and compare each record with the previous
      snapshot (keyed by address):
        * absent from the snapshot -> included ("new")
        * |price - prev| / prev > 0.01 -> included
        * |volume - prev| / prev > 0.1 -> included
        * previous price or volume of zero -> included (always significant)
    - The snapshot is updated with every observed record, included or not
    - A non-empty delta is broadcast as "update"; an empty one sends nothing

    A "refresh" message (full page, no delta filter) is only sent when the
    refresh scheduler's full-refresh path calls broadcast_refresh().

MESSAGE TYPES:
    - initial: {type, data, timestamp}
    - update: {type, data (delta only), timestamp}
    - refresh: {type, data (full page), timestamp}
    - error: {type, error, timestamp}

ERROR CODES:
    - PUSH-001: Send to subscriber failed (subscriber dropped)
    - PUSH-002: Page fetch failed during a tick or refresh
    - PUSH-003: Initial snapshot failed
============================================================================
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import asyncio
import logging
import uuid

from app.observability.metrics import record_push_message, update_subscriber_count
from data_ingestion.schemas import CanonicalRecord
from services.aggregation_service import AggregationService

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_PUSH_PAGE_SIZE = 30

# Relative change above which a record is pushed again
PRICE_CHANGE_THRESHOLD = 0.01
VOLUME_CHANGE_THRESHOLD = 0.1


class PushErrorCode:
    """Push channel error codes for audit logging."""
    SEND_FAILED = "PUSH-001"
    PAGE_FAILED = "PUSH-002"
    INITIAL_FAILED = "PUSH-003"


# =============================================================================
# Enums
# =============================================================================

class PushMessageType(Enum):
    """Push channel message kinds."""
    INITIAL = "initial"
    UPDATE = "update"
    REFRESH = "refresh"
    ERROR = "error"


class SubscriberState(Enum):
    """Subscriber connection state."""
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class PushMessage:
    """One frame on the push channel."""
    type: PushMessageType
    records: List[CanonicalRecord] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON frame sent to subscribers."""
        if self.type == PushMessageType.ERROR:
            return {
                "type": self.type.value,
                "error": self.error,
                "timestamp": self.timestamp,
            }
        return {
            "type": self.type.value,
            "data": [record.to_dict() for record in self.records],
            "timestamp": self.timestamp,
        }


@dataclass
class SubscriberSession:
    """
    One connected subscriber.

    ``socket`` is anything with an async send_json(dict) method, such as a
    Starlette WebSocket.
    """
    socket: Any
    subscriber_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: SubscriberState = SubscriberState.CONNECTED
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Change Detection
# =============================================================================

def _relative_change(current: float, previous: float) -> Optional[float]:
    if previous == 0:
        return None
    return abs(current - previous) / previous


def is_significant_change(current: CanonicalRecord, previous: CanonicalRecord) -> bool:
    """
    Decide whether a record moved enough since the last snapshot.

    A zero previous price or volume makes the relative change undefined;
    that case counts as significant.
    """
    price_change = _relative_change(current.price, previous.price)
    if price_change is None or price_change > PRICE_CHANGE_THRESHOLD:
        return True

    volume_change = _relative_change(current.volume, previous.volume)
    if volume_change is None or volume_change > VOLUME_CHANGE_THRESHOLD:
        return True

    return False


# =============================================================================
# Realtime Distributor
# =============================================================================

class RealtimeDistributor:
    """
    Fans out significant record changes to connected subscribers.

    ============================================================================
    RESPONSIBILITIES:
    ============================================================================
    1. Register and drop subscriber sessions
    2. Push the initial snapshot on connect
    3. Tick loop: compute the delta against the previous snapshot and
       broadcast it when non-empty
    4. Broadcast a full refresh on demand
    ============================================================================

    The previous-snapshot map is owned here exclusively and never written
    through the cache.

    Reliability Level: L6 Critical
    """

    def __init__(
        self,
        aggregation: AggregationService,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        page_size: int = DEFAULT_PUSH_PAGE_SIZE,
    ) -> None:
        """
        Initialize the distributor.

        Args:
            aggregation: Source of the pages pushed to subscribers
            interval_seconds: Tick interval
            page_size: Records per pushed page
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got: {interval_seconds}")
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got: {page_size}")

        self._aggregation = aggregation
        self._interval_seconds = interval_seconds
        self._page_size = page_size

        self._sessions: Dict[str, SubscriberSession] = {}
        self._snapshot: Dict[str, CanonicalRecord] = {}

        self._running = False
        self._task: Optional[asyncio.Task] = None

        logger.info(
            f"[PUSH] Initialized | "
            f"interval_seconds={interval_seconds} | "
            f"page_size={page_size}"
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._sessions)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def snapshot(self) -> Dict[str, CanonicalRecord]:
        """Copy of the previous-snapshot map."""
        return dict(self._snapshot)

    # =========================================================================
    # Subscriber Management
    # =========================================================================

    async def connect(self, socket: Any) -> SubscriberSession:
        """
        Register a subscriber and push the initial snapshot.

        Args:
            socket: Object with an async send_json(dict) method

        Returns:
            The new session (SUBSCRIBED once the first frame went out)
        """
        session = SubscriberSession(socket=socket)
        self._sessions[session.subscriber_id] = session
        update_subscriber_count(len(self._sessions))

        logger.info(
            f"[PUSH] Subscriber connected | "
            f"subscriber_id={session.subscriber_id} | "
            f"total_subscribers={len(self._sessions)}"
        )

        try:
            page = await self._aggregation.get_tokens(limit=self._page_size)
        except Exception as e:
            logger.error(
                f"{PushErrorCode.INITIAL_FAILED} Initial snapshot failed | "
                f"subscriber_id={session.subscriber_id} | error={e}"
            )
            if await self._send(
                session,
                PushMessage(PushMessageType.ERROR, error="Failed to fetch initial data"),
            ):
                session.state = SubscriberState.SUBSCRIBED
            return session

        if await self._send(session, PushMessage(PushMessageType.INITIAL, page.records)):
            session.state = SubscriberState.SUBSCRIBED
        return session

    def disconnect(self, session: SubscriberSession) -> None:
        """Drop a subscriber. Safe to call more than once."""
        session.state = SubscriberState.DISCONNECTED
        if self._sessions.pop(session.subscriber_id, None) is None:
            return

        update_subscriber_count(len(self._sessions))
        logger.info(
            f"[PUSH] Subscriber disconnected | "
            f"subscriber_id={session.subscriber_id} | "
            f"total_subscribers={len(self._sessions)}"
        )

    # =========================================================================
    # Delta Computation
    # =========================================================================

    def compute_delta(self, records: List[CanonicalRecord]) -> List[CanonicalRecord]:
        """
        Select the records worth pushing and advance the snapshot.

        Every observed record is written to the snapshot, whether or not it
        made it into the delta.
        """
        delta = []  # type: List[CanonicalRecord]

        for record in records:
            previous = self._snapshot.get(record.address)
            if previous is None or is_significant_change(record, previous):
                delta.append(record)
            self._snapshot[record.address] = record

        return delta

    # =========================================================================
    # Broadcasting
    # =========================================================================

    async def tick(self) -> int:
        """
        Run one distribution cycle.

        Returns:
            Number of records broadcast (0 when skipped or unchanged)
        """
        if not self._sessions:
            logger.debug("[PUSH] No subscribers, skipping tick")
            return 0

        try:
            page = await self._aggregation.get_tokens(limit=self._page_size)
        except Exception as e:
            logger.error(f"{PushErrorCode.PAGE_FAILED} Tick page fetch failed | error={e}")
            return 0

        delta = self.compute_delta(page.records)
        if not delta:
            logger.debug("[PUSH] No significant changes detected")
            return 0

        delivered = await self._broadcast(PushMessage(PushMessageType.UPDATE, delta))
        logger.info(
            f"[PUSH] Broadcast update | "
            f"records={len(delta)} | subscribers={delivered}"
        )
        return len(delta)

    async def broadcast_refresh(self) -> int:
        """
        Push the full current page to every subscriber, bypassing the delta.

        Returns:
            Number of subscribers reached
        """
        try:
            page = await self._aggregation.get_tokens(limit=self._page_size)
        except Exception as e:
            logger.error(f"{PushErrorCode.PAGE_FAILED} Refresh page fetch failed | error={e}")
            return 0

        delivered = await self._broadcast(PushMessage(PushMessageType.REFRESH, page.records))
        logger.info(
            f"[PUSH] Broadcast refresh | "
            f"records={len(page.records)} | subscribers={delivered}"
        )
        return delivered

    async def _broadcast(self, message: PushMessage) -> int:
        delivered = 0
        for session in list(self._sessions.values()):
            if session.state != SubscriberState.SUBSCRIBED:
                continue
            if await self._send(session, message):
                delivered += 1
        return delivered

    async def _send(self, session: SubscriberSession, message: PushMessage) -> bool:
        """Send one frame; a failed send drops the subscriber."""
        try:
            await session.socket.send_json(message.to_dict())
        except Exception as e:
            logger.warning(
                f"{PushErrorCode.SEND_FAILED} Send failed, dropping subscriber | "
                f"subscriber_id={session.subscriber_id} | "
                f"type={message.type.value} | error={e}"
            )
            self.disconnect(session)
            return False

        record_push_message(message.type.value)
        return True

    # =========================================================================
    # Background Loop
    # =========================================================================

    async def start(self) -> None:
        """Start the tick loop."""
        if self._running:
            logger.warning("[PUSH] Already running, ignoring start request")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"[PUSH] Started | interval_seconds={self._interval_seconds}")

    async def stop(self) -> None:
        """Stop the tick loop."""
        if not self._running:
            return

        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("[PUSH] Stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_seconds)
            except asyncio.CancelledError:
                break

            try:
                await self.tick()
            except Exception as e:
                logger.error(f"[PUSH] Error in tick loop | error={e}")
