from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Tuple

from netquality.database import Database
from netquality.loop_state import (
    LoopState,
    connectivity_due,
    handle_connectivity_result,
    handle_speed_result,
    should_run_speed_check,
    speed_due,
)
from netquality.models import Config, DatabaseError, SpeedResult
from netquality.notifier import Notifier
from netquality.prober import ConnectivityProber
from netquality.speedtester import SpeedTester, measure_speed

TICK_SECONDS = 1.0


class Monitor:
    def __init__(
        self,
        config: Config,
        db: Optional[Database] = None,
        notifier: Optional[Notifier] = None,
        prober: Optional[ConnectivityProber] = None,
        speedtester: Optional[SpeedTester] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.db = db or Database(config.storage.db_path)
        self.notifier = notifier or Notifier.from_config(config.notifications)
        self.prober = prober or ConnectivityProber(config.connectivity.timeout.total_seconds())
        self.speedtester = speedtester or SpeedTester(cli_path=config.speed.speedtest_cli_path)
        self.clock = clock
        self.state = LoopState.from_config(config, now=clock())
        self.next_cleanup_at: Optional[float] = None

    async def run(self, stop_event: threading.Event, tick_seconds: float = TICK_SECONDS) -> None:
        logging.info("Starting netquality monitor loop")
        try:
            if self.config.storage.cleanup_enabled:
                self.run_cleanup()
            while not stop_event.is_set():
                await self.tick()
                await asyncio.sleep(tick_seconds)
        finally:
            await self.close()
        logging.info("NetQuality shutdown complete.")

    async def tick(self) -> Tuple[Optional[int], Optional[int]]:
        """Run whatever checks are due and record them as one session."""
        connectivity_id = None
        speed_id = None

        if connectivity_due(self.state, self.clock()):
            connectivity_id = await self._check_connectivity()

        if speed_due(self.state, self.clock()):
            if should_run_speed_check(self.state, self.clock()):
                speed_id = await self._check_speed()
            else:
                logging.debug("Skipping speed check because connectivity is down.")

        if connectivity_id is not None or speed_id is not None:
            self.db.insert_session(connectivity_id, speed_id)

        if self.next_cleanup_at is not None and self.clock() >= self.next_cleanup_at:
            self.run_cleanup()

        return connectivity_id, speed_id

    async def _check_connectivity(self) -> int:
        result, self.state.next_url_index = await self.prober.probe(
            self.config.connectivity.urls, self.state.next_url_index
        )
        activity_id = self.db.insert_connectivity(result)
        was_down = self.state.outage_active
        handle_connectivity_result(self.config, self.state, result, now=self.clock())

        if result.success:
            logging.debug("%s reachable: %s in %d ms", result.url, result.result, result.elapsed_ms)
            if was_down:
                logging.info("Connectivity restored via %s", result.url)
        else:
            logging.warning(
                "Connectivity check failed (last %s: %s), next check in %.0fs",
                result.url,
                result.result,
                self.state.current_connectivity_delay.total_seconds(),
            )
        return activity_id

    async def _check_speed(self) -> int:
        result = await measure_speed(self.config, self.speedtester)
        activity_id = self.db.insert_speed(result)
        self._log_speed(result)

        decision = handle_speed_result(self.config, self.state, result, now=self.clock())
        if decision.outage_ended is not None:
            await self.notifier.send_outage_end(decision.outage_ended, result)
        if decision.notify_change:
            await self.notifier.send_speed_change(result)
        return activity_id

    def _log_speed(self, result: SpeedResult) -> None:
        if not result.success:
            return
        if result.upload_mbps is not None:
            logging.info(
                "Speed check: down=%.2f Mbps (%s) up=%.2f Mbps (%s)",
                result.download_mbps,
                result.download_threshold.label,
                result.upload_mbps,
                result.upload_threshold.label if result.upload_threshold else "n/a",
            )
        else:
            logging.info("Speed check: down=%.2f Mbps (%s)", result.download_mbps, result.download_threshold.label)

    def run_cleanup(self) -> None:
        try:
            stats = self.db.cleanup(self.config.storage.retention)
        except DatabaseError as exc:
            logging.warning("%s", exc)
        else:
            logging.info(
                "Database cleanup complete: %d sessions, %d connectivity, %d speed rows removed.",
                stats.sessions_deleted,
                stats.connectivity_deleted,
                stats.speed_deleted,
            )
        self.next_cleanup_at = self.clock() + self.config.storage.cleanup_interval.total_seconds()

    async def close(self) -> None:
        await self.notifier.close()
        await self.prober.aclose()
        self.db.close()
