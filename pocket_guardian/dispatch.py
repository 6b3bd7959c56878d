"""Concurrent delivery of captured evidence to emergency contacts."""

import asyncio
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

import structlog

from .clock import Clock, SystemClock
from .errors import ChannelSendFailed
from .interfaces import Channel
from .models import (
    CaptureResult,
    ChannelKind,
    ContactDispatchResult,
    DispatchOutcome,
    DispatchReport,
    EmergencyContact,
    MediaRef,
)

logger = structlog.get_logger(__name__)

ALERT_TITLE = "EMERGENCY - PocketGuardian Alert"


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def camera_summary(evidence: CaptureResult) -> str:
    devices = sorted(evidence.per_device)
    if not devices:
        return "no camera"
    if len(devices) == 1:
        return f"{devices[0]} camera"
    return f"{', '.join(devices)} cameras"


def compose_alert_text(evidence: CaptureResult) -> str:
    """Short text for the SMS and image channels."""
    return (
        f"EMERGENCY: PocketGuardian detected a possible emergency at "
        f"{_format_time(evidence.timestamp)}. Evidence captured from "
        f"{camera_summary(evidence)}. Please check on me immediately."
    )


def compose_email(evidence: CaptureResult) -> tuple[str, str]:
    """Subject and plain-text body for the email channel."""
    subject = ALERT_TITLE
    if len(evidence.per_device) > 1:
        subject = f"{ALERT_TITLE} (multi-camera)"

    lines = [
        "PocketGuardian detected an unusual movement and no one cancelled the alert.",
        "",
        f"Time: {_format_time(evidence.timestamp)}",
        f"Evidence: {camera_summary(evidence)}",
    ]
    for device_id, media in sorted(evidence.per_device.items()):
        lines.append(f"  - {device_id}: {media.kind.value} {media.uri}")
    if evidence.failures:
        lines.append("")
        lines.append("Cameras without evidence:")
        for device_id, error in sorted(evidence.failures.items()):
            lines.append(f"  - {device_id}: {error}")
    lines.extend(["", "Please contact this person or the emergency services."])
    return subject, "\n".join(lines)


class DispatchFanout:
    """Sends evidence to every contact over every applicable channel.

    Contacts run concurrently up to ``max_concurrent_contacts``; channels for
    one contact run concurrently. Failures are recorded as outcomes and never
    abort sibling work.
    """

    def __init__(
        self,
        channels: Mapping[ChannelKind, Channel],
        *,
        channel_timeout: float = 30.0,
        max_concurrent_contacts: int = 5,
        clock: Optional[Clock] = None,
    ):
        self.channels = dict(channels)
        self.channel_timeout = channel_timeout
        self.max_concurrent_contacts = max_concurrent_contacts
        self.clock = clock or SystemClock()

    async def dispatch(
        self, evidence: CaptureResult, contacts: Sequence[EmergencyContact]
    ) -> DispatchReport:
        started_at = self.clock.now()
        semaphore = asyncio.Semaphore(self.max_concurrent_contacts)

        logger.info(
            "Dispatching emergency alert",
            contacts=len(contacts),
            devices=list(evidence.per_device),
        )

        async def _bounded(contact: EmergencyContact) -> ContactDispatchResult:
            async with semaphore:
                return await self._dispatch_contact(evidence, contact)

        results = await asyncio.gather(
            *(_bounded(contact) for contact in contacts), return_exceptions=True
        )

        per_contact: list[ContactDispatchResult] = []
        for contact, result in zip(contacts, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Contact dispatch crashed",
                    contact_id=contact.id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                result = ContactDispatchResult(
                    contact_id=contact.id,
                    contact_name=contact.name,
                    outcomes=[
                        DispatchOutcome(
                            contact_id=contact.id,
                            channel=kind,
                            success=False,
                            error=str(result) or type(result).__name__,
                        )
                        for kind in self._channels_for(contact)
                    ],
                )
            per_contact.append(result)

        report = DispatchReport(
            contacts=per_contact, started_at=started_at, finished_at=self.clock.now()
        )
        logger.info(
            "Dispatch finished",
            successful_contacts=report.successful_contacts,
            total_contacts=len(per_contact),
            outcomes=len(report.outcomes),
        )
        return report

    def _channels_for(self, contact: EmergencyContact) -> list[ChannelKind]:
        kinds = [ChannelKind.IMAGE, ChannelKind.SMS]
        if contact.email:
            kinds.append(ChannelKind.EMAIL)
        return kinds

    async def _dispatch_contact(
        self, evidence: CaptureResult, contact: EmergencyContact
    ) -> ContactDispatchResult:
        text = compose_alert_text(evidence)
        subject, body = compose_email(evidence)
        primary = evidence.primary

        attempts: dict[ChannelKind, tuple[str, str, list[MediaRef]]] = {
            ChannelKind.IMAGE: (contact.phone, text, [primary] if primary else []),
            ChannelKind.SMS: (contact.phone, text, []),
        }
        if contact.email:
            attempts[ChannelKind.EMAIL] = (contact.email, f"{subject}\n\n{body}", evidence.media)

        kinds = list(attempts)
        results = await asyncio.gather(
            *(self._send(kind, contact, *attempts[kind]) for kind in kinds),
            return_exceptions=True,
        )

        outcomes = []
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                failure = result
                if not isinstance(failure, ChannelSendFailed):
                    failure = ChannelSendFailed(kind.value, contact.id, str(result) or type(result).__name__)
                logger.warning("Channel send failed", contact_id=contact.id, channel=kind.value, error=str(failure))
                outcomes.append(
                    DispatchOutcome(contact_id=contact.id, channel=kind, success=False, error=str(failure))
                )
            else:
                outcomes.append(result)

        contact_result = ContactDispatchResult(
            contact_id=contact.id, contact_name=contact.name, outcomes=outcomes
        )
        logger.info(
            "Contact dispatch complete",
            contact_id=contact.id,
            success=contact_result.success,
            channels={outcome.channel.value: outcome.success for outcome in outcomes},
        )
        return contact_result

    async def _send(
        self,
        kind: ChannelKind,
        contact: EmergencyContact,
        destination: str,
        message: str,
        media: list[MediaRef],
    ) -> DispatchOutcome:
        channel = self.channels.get(kind)
        if channel is None:
            raise ChannelSendFailed(kind.value, contact.id, "channel not configured")

        try:
            delivered = await asyncio.wait_for(
                channel.send(destination, message, media), timeout=self.channel_timeout
            )
        except asyncio.TimeoutError:
            raise ChannelSendFailed(kind.value, contact.id, f"timed out after {self.channel_timeout}s")

        if not delivered:
            raise ChannelSendFailed(kind.value, contact.id, "rejected by channel")

        return DispatchOutcome(contact_id=contact.id, channel=kind, success=True)
