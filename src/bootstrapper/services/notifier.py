"""Progress callbacks to an external HTTP endpoint."""

import logging
from typing import Optional

import httpx

from bootstrapper.api.models import StageReportPayload
from bootstrapper.models.events import StageEvent
from bootstrapper.models.status import stage_message, stage_progress, to_wire
from bootstrapper.services.reporter import EventReporter


class WebhookNotifier:
    """Forwards stage transitions to ``callback_url``.

    Runs as an ordinary reporter subscriber, so a slow or unreachable endpoint
    never holds up the setup.
    """

    def __init__(
        self,
        callback_url: str,
        reporter: EventReporter,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize webhook notifier.

        Args:
            callback_url: Endpoint receiving POSTed stage reports
            reporter: Event reporter to subscribe to
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.logger = logging.getLogger("bootstrapper.notifier")
        self.callback_url = callback_url
        self.reporter = reporter
        self.transport = transport

    async def run(self) -> None:
        """Forward stage events until the reporter closes the subscription."""
        subscription = self.reporter.subscribe()
        self.logger.info(f"Forwarding stage events to {self.callback_url}")
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
                async for event in subscription:
                    if isinstance(event, StageEvent):
                        await self.report_stage(client, event)
        finally:
            subscription.close()

    async def report_stage(self, client: httpx.AsyncClient, event: StageEvent) -> None:
        """POST one stage report.

        Note:
            Failures are logged but not raised to avoid blocking setup
        """
        payload = StageReportPayload(
            stage=event.stage,
            progress=stage_progress(event.stage),
            message=stage_message(event.stage),
        )
        self.logger.debug(f"Reporting stage {to_wire(event.stage)} to {self.callback_url}")
        try:
            response = await client.post(self.callback_url, json=payload.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning(
                f"Failed to report stage to {self.callback_url}: {e}. Continuing setup..."
            )
