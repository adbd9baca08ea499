"""
Escalation External Service Integrations
========================================

External services for complaint escalation:
- YAML seed file for default escalation rules
- Email relay notifications
- APScheduler for background sweeps
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError

from grievance.config import settings
from grievance.core import ConfigurationException, EmailDeliveryException
from grievance.escalation.application import INotificationSink
from grievance.escalation.domain import Authority, Complaint, RuleSeedConfig
from grievance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RuleSeedLoader:
    """
    Loads default escalation rules from a YAML file.

    Expected shape:
        rules:
          High: {time_limit_hours: 72}
          Medium: {time_limit_hours: 168, escalation_authority_id: 2}
    """

    def __init__(self, path: Path):
        self._path = Path(path)

    def load(self) -> RuleSeedConfig:
        if not self._path.exists():
            logger.warning(
                f"Escalation rule seed file not found: {self._path}, using defaults"
            )
            return RuleSeedConfig()

        try:
            with open(self._path, "r") as f:
                data = yaml.safe_load(f) or {}
            return RuleSeedConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation rule seed file: {self._path}",
                {"error": str(e)}
            ) from e


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1

        # A failed half-open trial re-opens immediately
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class EmailMessage:
    """Outgoing email."""
    to: str
    subject: str
    text: str
    html: str

    def to_payload(self, sender: str) -> Dict[str, Any]:
        return {
            "from": sender,
            "to": self.to,
            "subject": self.subject,
            "text": self.text,
            "html": self.html,
        }


class EmailNotificationClient(INotificationSink):
    """
    Email relay client with circuit breaker and retry logic.

    Posts a JSON envelope to an HTTP mail relay with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Delivery is best-effort: every method returns False instead of raising.
    """

    def __init__(
        self,
        relay_url: Optional[str] = None,
        sender: Optional[str] = None,
        portal_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._relay_url = relay_url if relay_url is not None else settings.email_relay_url
        self._sender = sender or settings.email_sender
        self._portal_url = portal_url or settings.portal_url
        self._timeout = timeout_seconds or settings.email_timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff = backoff_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport
            )
        return self._http_client

    def _complaint_link(self, complaint: Complaint) -> str:
        return f"{self._portal_url.rstrip('/')}/complaints/{complaint.ucn}"

    def _build_escalation(
        self,
        complaint: Complaint,
        reason: str,
        authority: Optional[Authority]
    ) -> EmailMessage:
        owner = complaint.user_name or "Citizen"
        handler = f" It is now handled by {authority.name}." if authority else ""
        link = self._complaint_link(complaint)

        text = (
            f"Dear {owner},\n\n"
            f"Your complaint {complaint.ucn} has been escalated.{handler}\n"
            f"Reason: {reason}\n\n"
            f"Track it at {link}\n"
        )
        html = (
            f"<p>Dear {owner},</p>"
            f"<p>Your complaint <strong>{complaint.ucn}</strong> has been escalated.{handler}</p>"
            f"<p>Reason: {reason}</p>"
            f'<p><a href="{link}">Track your complaint</a></p>'
        )
        return EmailMessage(
            to=complaint.user_email,
            subject=f"Complaint Escalated - {complaint.ucn}",
            text=text,
            html=html,
        )

    def _build_status_change(
        self,
        complaint: Complaint,
        old_status: str,
        new_status: str,
        remarks: Optional[str]
    ) -> EmailMessage:
        owner = complaint.user_name or "Citizen"
        link = self._complaint_link(complaint)
        remark_line = f"Remarks: {remarks}\n" if remarks else ""

        text = (
            f"Dear {owner},\n\n"
            f'Your complaint {complaint.ucn} changed from "{old_status}" to "{new_status}".\n'
            f"{remark_line}\n"
            f"Track it at {link}\n"
        )
        html = (
            f"<p>Dear {owner},</p>"
            f"<p>Your complaint <strong>{complaint.ucn}</strong> changed from "
            f"<em>{old_status}</em> to <em>{new_status}</em>.</p>"
            + (f"<p>Remarks: {remarks}</p>" if remarks else "")
            + f'<p><a href="{link}">Track your complaint</a></p>'
        )
        return EmailMessage(
            to=complaint.user_email,
            subject=f"Complaint Update - {complaint.ucn}",
            text=text,
            html=html,
        )

    async def notify_escalation(
        self,
        complaint: Complaint,
        reason: str,
        authority: Optional[Authority] = None
    ) -> bool:
        if not complaint.user_email:
            return False
        return await self._send(
            self._build_escalation(complaint, reason, authority), complaint.ucn
        )

    async def notify_status_change(
        self,
        complaint: Complaint,
        old_status: str,
        new_status: str,
        remarks: Optional[str] = None
    ) -> bool:
        if not complaint.user_email:
            return False
        return await self._send(
            self._build_status_change(complaint, old_status, new_status, remarks),
            complaint.ucn
        )

    async def _send(self, message: EmailMessage, ucn: str) -> bool:
        """
        Post one email to the relay.

        Returns:
            True if sent successfully, False otherwise
        """
        if not self._relay_url:
            logger.debug("Email relay URL not configured, skipping email")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping email",
                extra={"ucn": ucn}
            )
            return False

        payload = message.to_payload(self._sender)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._relay_url, json=payload)

                if not response.is_success:
                    raise EmailDeliveryException(
                        f"relay returned {response.status_code}",
                        {"status_code": response.status_code}
                    )

                self._circuit_breaker.record_success()
                logger.info(
                    "Email notification sent",
                    extra={"ucn": ucn, "subject": message.subject}
                )
                return True
            except (httpx.HTTPError, EmailDeliveryException) as e:
                logger.error(
                    "Email notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ucn": ucn}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EscalationScheduler:
    """
    Wrapper for APScheduler running background escalation jobs.

    Manages the lifecycle of the scheduler and its interval jobs.
    """

    def __init__(self, misfire_grace_seconds: int = 300):
        self._misfire_grace = misfire_grace_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: Dict[str, tuple] = {}

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        seconds: int,
        name: Optional[str] = None
    ) -> None:
        """Register a job; it is scheduled when the scheduler starts."""
        self._jobs[job_id] = (func, seconds, name or job_id)
        if self._scheduler is not None:
            self._schedule(job_id)

    def _schedule(self, job_id: str) -> None:
        func, seconds, name = self._jobs[job_id]
        self._scheduler.add_job(
            func,
            "interval",
            seconds=seconds,
            id=job_id,
            name=name,
            misfire_grace_time=self._misfire_grace,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )

    def start(self) -> None:
        """Start the scheduler. Must be called from a running event loop."""
        if self.is_running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        for job_id in self._jobs:
            self._schedule(job_id)
        self._scheduler.start()

        logger.info(
            "Escalation scheduler started",
            extra={"jobs": {job_id: job[1] for job_id, job in self._jobs.items()}}
        )

    def remove_jobs(self) -> None:
        """Prevent any further runs without stopping the scheduler."""
        if self._scheduler is not None:
            self._scheduler.remove_all_jobs()

    def stop(self) -> None:
        """Shut the scheduler down. Safe to call when not running."""
        if self._scheduler is None:
            return

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
