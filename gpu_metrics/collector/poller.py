# gpu_metrics/collector/poller.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List

import requests

from ..config import CollectorConfig
from ..errors import GPUMetricsError, TransmissionError
from ..types import GPUMetric, MetricsPayload
from . import parsers

log = logging.getLogger(__name__)

SEND_TIMEOUT = 30  # seconds


class Collector:
    """Collect-then-send loop for one GPU host.

    One cycle = run nvidia-smi, parse, POST once. A failed cycle is logged and
    dropped; the next tick is the only recovery (no retry, no local spool).
    """

    def __init__(
        self,
        config: CollectorConfig,
        session: requests.Session | None = None,
        run_tool: Callable[[], str] = parsers.call_nvidia_smi,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self._run_tool = run_tool

    def collect(self) -> MetricsPayload:
        """Invoke the tool once and build this cycle's payload.

        ToolInvocationError propagates: no payload, nothing to send.
        """
        gpus: List[GPUMetric] = parsers.parse_output(self._run_tool())
        return MetricsPayload(
            instance_id=self.config.instance_id,
            timestamp=datetime.now(timezone.utc),
            gpus=gpus,
        )

    def send(self, payload: MetricsPayload) -> None:
        """Single POST; anything but HTTP 200 is a TransmissionError."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        try:
            resp = self.session.post(
                self.config.metrics_url,
                data=payload.to_json(),
                headers=headers,
                timeout=SEND_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise TransmissionError(f"failed to send metrics: {exc}") from exc

        if resp.status_code != 200:
            raise TransmissionError(f"metrics server returned status {resp.status_code}")

    def collect_and_send(self) -> bool:
        """Run one full cycle. Returns True when the payload was delivered."""
        try:
            payload = self.collect()
        except GPUMetricsError as exc:
            log.error("Error collecting GPU metrics: %s", exc)
            return False

        log.info("Collected metrics for %d GPUs", len(payload.gpus))

        try:
            self.send(payload)
        except GPUMetricsError as exc:
            log.error("Error sending metrics: %s", exc)
            return False

        log.info("Successfully sent metrics for %d GPUs", len(payload.gpus))
        return True

    def run(self, loop: bool = True) -> None:
        """First cycle fires immediately, then one per `collect_interval`."""
        log.info("Starting GPU metrics collector for instance %s", self.config.instance_id)
        log.info("Collecting metrics every %ss", self.config.collect_interval)
        log.info("Sending to: %s", self.config.metrics_url)

        while True:
            started = time.monotonic()
            try:
                self.collect_and_send()
            except Exception as exc:
                log.error("Collector error: %s", exc)
            if not loop:
                break
            # a slow cycle eats into the wait; ticks are never stacked up
            elapsed = time.monotonic() - started
            time.sleep(max(0.0, self.config.collect_interval - elapsed))
