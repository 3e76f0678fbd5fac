"""Unit tests for WebhookNotifier."""

import asyncio
import json

import httpx
import pytest

from bootstrapper.models.events import StageEvent
from bootstrapper.models.session import LogLine
from bootstrapper.models.status import InstallationStage, LogSource
from bootstrapper.services.notifier import WebhookNotifier
from bootstrapper.services.reporter import EventReporter


@pytest.mark.unit
class TestWebhookNotifier:
    """Test stage forwarding to the callback URL."""

    @pytest.mark.asyncio
    async def test_report_stage_payload(self):
        """Test the payload carries wire name, progress and message."""
        # Arrange
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        notifier = WebhookNotifier("http://callback.test/report", EventReporter())

        # Act
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await notifier.report_stage(
                client, StageEvent(stage=InstallationStage.RUNTIME_INSTALLED)
            )

        # Assert
        assert received == [
            {"stage": "RuntimeInstalled", "progress": 50, "message": "Container runtime ready"}
        ]

    @pytest.mark.asyncio
    async def test_report_stage_error_not_raised(self):
        """Test callback failures are logged but never raised."""
        notifier = WebhookNotifier("http://callback.test/report", EventReporter())
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        async with httpx.AsyncClient(transport=transport) as client:
            await notifier.report_stage(client, StageEvent(stage=InstallationStage.SETUP_COMPLETE))

    @pytest.mark.asyncio
    async def test_run_forwards_stage_events_only(self):
        """Test log events are not forwarded and run ends on reporter close."""
        # Arrange
        received = []

        def handler(request):
            received.append(json.loads(request.content)["stage"])
            return httpx.Response(204)

        reporter = EventReporter()
        notifier = WebhookNotifier(
            "http://callback.test/report", reporter, transport=httpx.MockTransport(handler)
        )
        task = asyncio.create_task(notifier.run())
        await asyncio.sleep(0)

        # Act
        reporter.publish_stage(InstallationStage.PROBING_RUNTIME)
        reporter.publish_log(LogLine(source=LogSource.CONTAINER, text="hello", sequence=1))
        reporter.publish_stage(InstallationStage.RUNTIME_INSTALLED)
        reporter.close()
        await asyncio.wait_for(task, timeout=2.0)

        # Assert
        assert received == ["ProbingRuntime", "RuntimeInstalled"]
        assert reporter.subscriber_count == 0
