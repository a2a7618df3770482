"""Edge-side patrol execution client.

Drives a guard through login, pending list, execution and completion against
the patrol HTTP endpoints. Checkpoint scans taken while offline go to a
`DurableMarkQueue` and are replayed in FIFO order once connectivity returns.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import requests

from fieldops.client.device import BatteryProvider, LocationFix, LocationProvider, MotionSampler
from fieldops.client.errors import LocationUnavailableError, decode_json, raise_for_response
from fieldops.client.queue import DurableMarkQueue
from fieldops.errors import ApiError, ConflictError, TransientError

logger = logging.getLogger("fieldops.client")

DEFAULT_HTTP_TIMEOUT_S = 10.0
DEFAULT_LOCATION_TIMEOUT_S = 10.0
MAX_FIX_AGE_S = 30.0


class ClientState(str, enum.Enum):
    LOGIN = "login"
    PENDING_LIST = "pending_list"
    IN_EXECUTION = "in_execution"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RejectedMark:
    item_id: str
    payload: dict[str, Any]
    code: str
    message: str


@dataclass(frozen=True)
class ScanOutcome:
    client_mark_id: str
    queued: bool
    duplicate: bool = False
    marks_recorded: int | None = None


@dataclass
class FlushResult:
    submitted: int = 0
    rejected: list[RejectedMark] = field(default_factory=list)
    remaining: int = 0


class PatrolClient:
    def __init__(
        self,
        base_url: str,
        site_code: str,
        queue: DurableMarkQueue,
        location_provider: LocationProvider,
        battery_provider: BatteryProvider | None = None,
        motion_sampler: MotionSampler | None = None,
        online: bool = True,
        session: requests.Session | None = None,
        user_agent: str = "fieldops-patrol-client/0.1",
        http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
        location_timeout_s: float = DEFAULT_LOCATION_TIMEOUT_S,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.site_code = site_code
        self.queue = queue
        self.location_provider = location_provider
        self.battery_provider = battery_provider
        self.motion_sampler = motion_sampler or MotionSampler()
        self.online = online
        self.session = session or requests.Session()
        self.user_agent = user_agent
        self.http_timeout_s = http_timeout_s
        self.location_timeout_s = location_timeout_s

        self.state = ClientState.LOGIN
        self.guard_name: str | None = None
        self.pending: list[dict[str, Any]] = []
        self.execution_id: int | None = None
        self.checkpoints_total: int | None = None
        self.marks_recorded = 0
        self.final_status: str | None = None
        self.trust_score: float | None = None
        self.rejected: list[RejectedMark] = []
        self.last_error: ApiError | None = None
        self._credentials: dict[str, str] | None = None

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={"User-Agent": self.user_agent},
                timeout=self.http_timeout_s,
            )
        except requests.RequestException as exc:
            raise TransientError(f"Network error: {exc}", code="NETWORK_ERROR") from exc
        raise_for_response(response)
        return decode_json(response)

    def _require_state(self, expected: ClientState) -> None:
        if self.state != expected:
            raise ConflictError(
                f"Operation requires state {expected.value}, client is {self.state.value}.",
                code="INVALID_CLIENT_STATE",
            )

    def _battery_level(self) -> float | None:
        if self.battery_provider is None:
            return None
        level = self.battery_provider.level()
        return None if level is None else float(level)

    def login(self, national_id: str, pin: str) -> list[dict[str, Any]]:
        self._require_state(ClientState.LOGIN)
        credentials = {"siteCode": self.site_code, "nationalId": national_id, "pin": pin}
        try:
            session_info = self._post("/patrols/authenticate", credentials)
            self._credentials = credentials
            self.guard_name = session_info["guardName"]
            self.refresh_pending()
        except ApiError as exc:
            self.last_error = exc
            self._credentials = None
            logger.warning("patrol_client_login_failed", extra={"code": exc.code})
            raise
        self.last_error = None
        self.state = ClientState.PENDING_LIST
        logger.info("patrol_client_logged_in", extra={"pending": len(self.pending)})
        return self.pending

    def refresh_pending(self) -> list[dict[str, Any]]:
        if self._credentials is None:
            raise ConflictError("Not logged in.", code="INVALID_CLIENT_STATE")
        listing = self._post("/patrols/list-pending", self._credentials)
        self.pending = listing.get("executions", [])
        return self.pending

    def select_execution(self, execution_id: int) -> None:
        self._require_state(ClientState.PENDING_LIST)
        device_info: dict[str, Any] = {"userAgent": self.user_agent}
        battery = self._battery_level()
        if battery is not None:
            device_info["batteryLevel"] = battery
        try:
            started = self._post(
                "/patrols/start",
                {**(self._credentials or {}), "executionId": execution_id, "deviceInfo": device_info},
            )
        except ApiError as exc:
            self.last_error = exc
            raise
        self.execution_id = started["executionId"]
        self.checkpoints_total = started["checkpointsTotal"]
        self.marks_recorded = 0
        self.state = ClientState.IN_EXECUTION
        logger.info("patrol_client_execution_started", extra={"execution_id": self.execution_id})

    def _acquire_fix(self) -> LocationFix:
        try:
            fix = self.location_provider.acquire(self.location_timeout_s)
        except LocationUnavailableError:
            raise
        except Exception as exc:
            raise LocationUnavailableError(f"Location acquisition failed: {exc}") from exc
        acquired_at = fix.acquired_at
        if acquired_at.tzinfo is None:
            acquired_at = acquired_at.replace(tzinfo=timezone.utc)
        age_s = (datetime.now(timezone.utc) - acquired_at).total_seconds()
        if age_s > MAX_FIX_AGE_S:
            raise LocationUnavailableError(f"Location fix is stale ({age_s:.0f}s old).")
        return fix

    def _submit_mark(self, payload: dict[str, Any]) -> dict[str, Any]:
        result = self._post("/patrols/mark-checkpoint", payload)
        self.marks_recorded = result.get("marksRecorded", self.marks_recorded)
        return result

    def scan_checkpoint(self, checkpoint_code: str) -> ScanOutcome:
        self._require_state(ClientState.IN_EXECUTION)
        fix = self._acquire_fix()
        client_mark_id = uuid4().hex
        payload: dict[str, Any] = {
            "executionId": self.execution_id,
            "checkpointCode": checkpoint_code,
            "lat": fix.lat,
            "lng": fix.lng,
            "motionScore": self.motion_sampler.score,
            "clientMarkId": client_mark_id,
        }
        battery = self._battery_level()
        if battery is not None:
            payload["batteryLevel"] = battery

        if not self.online or len(self.queue) > 0:
            self.queue.append(payload, item_id=client_mark_id)
            logger.info(
                "patrol_client_mark_queued",
                extra={"client_mark_id": client_mark_id, "online": self.online},
            )
            if self.online:
                self.flush_queue()
            still_queued = any(item.item_id == client_mark_id for item in self.queue.pending())
            return ScanOutcome(client_mark_id=client_mark_id, queued=still_queued)

        try:
            result = self._submit_mark(payload)
        except TransientError:
            self.queue.append(payload, item_id=client_mark_id)
            logger.warning("patrol_client_mark_deferred", extra={"client_mark_id": client_mark_id})
            return ScanOutcome(client_mark_id=client_mark_id, queued=True)
        return ScanOutcome(
            client_mark_id=client_mark_id,
            queued=False,
            duplicate=bool(result.get("duplicate")),
            marks_recorded=self.marks_recorded,
        )

    def flush_queue(self) -> FlushResult:
        """Replay queued marks oldest first, stopping at the first transient failure."""
        outcome = FlushResult()
        for item in self.queue.pending():
            try:
                self._submit_mark(item.payload)
            except TransientError as exc:
                logger.warning(
                    "patrol_client_flush_interrupted",
                    extra={"item_id": item.item_id, "code": exc.code},
                )
                break
            except ApiError as exc:
                rejected = RejectedMark(item_id=item.item_id, payload=item.payload, code=exc.code, message=exc.message)
                self.rejected.append(rejected)
                outcome.rejected.append(rejected)
                self.queue.ack(item.item_id)
                logger.error(
                    "patrol_client_mark_rejected",
                    extra={"item_id": item.item_id, "code": exc.code},
                )
                continue
            self.queue.ack(item.item_id)
            outcome.submitted += 1
        outcome.remaining = len(self.queue)
        if outcome.submitted or outcome.rejected:
            logger.info(
                "patrol_client_queue_flushed",
                extra={
                    "submitted": outcome.submitted,
                    "rejected": len(outcome.rejected),
                    "remaining": outcome.remaining,
                },
            )
        return outcome

    def on_connectivity_change(self, online: bool) -> FlushResult | None:
        self.online = online
        logger.info("patrol_client_connectivity_changed", extra={"online": online})
        if online and self.state == ClientState.IN_EXECUTION and len(self.queue) > 0:
            return self.flush_queue()
        return None

    def complete(self) -> dict[str, Any]:
        self._require_state(ClientState.IN_EXECUTION)
        if len(self.queue) > 0:
            if self.online:
                self.flush_queue()
            if len(self.queue) > 0:
                raise TransientError(
                    "Queued checkpoint marks must be delivered before completing.",
                    code="QUEUE_NOT_DRAINED",
                )
        try:
            result = self._post("/patrols/complete", {"executionId": self.execution_id})
        except ApiError as exc:
            self.last_error = exc
            raise
        self.final_status = result["status"]
        self.trust_score = result["trustScore"]
        self.marks_recorded = result["marksRecorded"]
        self.state = ClientState.COMPLETED
        logger.info(
            "patrol_client_execution_completed",
            extra={
                "execution_id": self.execution_id,
                "status": self.final_status,
                "trust_score": self.trust_score,
            },
        )
        return result

    def panic(self) -> bool:
        """Best-effort alert; never raises and never changes client state."""
        if self.state != ClientState.IN_EXECUTION:
            logger.warning("patrol_client_panic_ignored", extra={"state": self.state.value})
            return False
        try:
            fix = self._acquire_fix()
            self._post(
                "/patrols/panic",
                {"executionId": self.execution_id, "lat": fix.lat, "lng": fix.lng},
            )
        except ApiError as exc:
            logger.error("patrol_client_panic_failed", extra={"code": exc.code, "error": exc.message})
            return False
        logger.warning("patrol_client_panic_sent", extra={"execution_id": self.execution_id})
        return True
