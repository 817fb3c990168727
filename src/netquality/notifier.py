from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Sequence

import httpx
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter

from netquality.models import NotificationConfig, NotificationError, OutageInfo, SpeedResult, TelegramConfig

TELEGRAM_API_URL = "https://api.telegram.org"
SPAN_NAME = "netquality.notification"


class TelegramChannel:
    name = "Telegram"

    def __init__(self, config: TelegramConfig, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0) -> None:
        self.config = config
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()

    async def send(self, message: str) -> None:
        url = f"{TELEGRAM_API_URL}/bot{self.config.bot_token}/sendMessage"
        payload = {"chat_id": self.config.chat_id, "text": message}
        try:
            response = await self.client.post(url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise NotificationError(self._redact(f"{type(exc).__name__}: {exc}")) from exc
        if not response.is_success:
            raise NotificationError(f"Telegram response status {response.status_code}")

    def _redact(self, text: str) -> str:
        if self.config.bot_token:
            return text.replace(self.config.bot_token, "<redacted>")
        return text

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class OpenTelemetryChannel:
    """Emits one span per notification, carrying the text as the `message` attribute."""

    name = "OpenTelemetry"

    def __init__(self, endpoint: str, exporter: Optional[SpanExporter] = None) -> None:
        self.endpoint = endpoint
        self.provider = TracerProvider(resource=Resource.create({"service.name": "netquality"}))
        self.provider.add_span_processor(SimpleSpanProcessor(exporter or OTLPSpanExporter(endpoint=endpoint)))
        self.tracer = self.provider.get_tracer("netquality")

    async def send(self, message: str) -> None:
        # SimpleSpanProcessor exports synchronously when the span ends.
        await asyncio.to_thread(self._emit, message)

    def _emit(self, message: str) -> None:
        span = self.tracer.start_span(SPAN_NAME)
        span.set_attribute("message", message)
        span.end()

    async def close(self) -> None:
        self.provider.force_flush()
        self.provider.shutdown()


class Notifier:
    def __init__(self, channels: Optional[Sequence[object]] = None) -> None:
        self.channels: List[object] = list(channels or [])

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "Notifier":
        channels: List[object] = []
        if config.telegram is not None:
            channels.append(TelegramChannel(config.telegram))
        if config.otel_endpoint:
            channels.append(OpenTelemetryChannel(config.otel_endpoint))
        return cls(channels)

    async def send(self, message: str) -> None:
        if not self.channels:
            logging.warning("No notification channels configured; message dropped.")
            return
        for channel in self.channels:
            try:
                await channel.send(message)
            except Exception as exc:
                logging.warning("Failed to send %s notification: %s", channel.name, exc)
            else:
                logging.debug("%s notification sent", channel.name)

    async def send_outage_end(self, outage: OutageInfo, speed: SpeedResult) -> None:
        await self.send(format_outage_end(outage, speed))

    async def send_speed_change(self, speed: SpeedResult) -> None:
        await self.send(format_speed_change(speed))

    async def close(self) -> None:
        for channel in self.channels:
            try:
                await channel.close()
            except Exception as exc:
                logging.warning("Failed to shut down %s channel: %s", channel.name, exc)


def format_duration(duration: timedelta) -> str:
    seconds = max(0, int(duration.total_seconds()))
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"


def format_outage_end(outage: OutageInfo, speed: SpeedResult) -> str:
    if speed.success:
        download = f"{speed.download_mbps:.2f} Mbps"
        upload = f"{speed.upload_mbps:.2f} Mbps" if speed.upload_mbps is not None else "n/a"
    else:
        download = upload = "n/a (speed test failed)"
    return (
        "Outage ended.\n"
        f"Start: {outage.started_at.isoformat()}\n"
        f"End: {outage.ended_at.isoformat()}\n"
        f"Duration: {format_duration(outage.duration)}\n"
        f"Download: {download}\n"
        f"Upload: {upload}"
    )


def format_speed_change(speed: SpeedResult) -> str:
    message = f"Speed change detected.\nDownload: {speed.download_mbps:.2f} Mbps ({speed.download_threshold.label})"
    if speed.upload_mbps is not None:
        label = speed.upload_threshold.label if speed.upload_threshold else "Unknown"
        message += f"\nUpload: {speed.upload_mbps:.2f} Mbps ({label})"
    return message
