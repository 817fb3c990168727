"""Scheduling, outage backoff and notification gating for the monitor loop.

`LoopState` has a single owner (the running `Monitor`); the functions here
mutate it in place and never touch the network or the database.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from netquality.models import Config, ConnectivityResult, OutageInfo, SpeedResult, ThresholdCategory


@dataclass
class LoopState:
    next_connectivity_at: float
    next_speed_at: float
    current_connectivity_delay: timedelta
    next_url_index: int = 0
    outage_active: bool = False
    outage_start: Optional[datetime] = None
    pending_outage_end: Optional[OutageInfo] = None
    pending_speed_after_restore: bool = False
    last_connectivity_success: bool = True
    last_download_threshold: Optional[ThresholdCategory] = None
    last_upload_threshold: Optional[ThresholdCategory] = None

    @classmethod
    def from_config(cls, config: Config, now: Optional[float] = None) -> "LoopState":
        now = time.monotonic() if now is None else now
        return cls(
            next_connectivity_at=now,
            next_speed_at=now,
            current_connectivity_delay=config.connectivity.delay,
        )


@dataclass
class SpeedDecision:
    outage_ended: Optional[OutageInfo]
    download_changed: bool
    upload_changed: bool
    notify_change: bool


def connectivity_due(state: LoopState, now: Optional[float] = None) -> bool:
    now = time.monotonic() if now is None else now
    return now >= state.next_connectivity_at


def handle_connectivity_result(
    config: Config,
    state: LoopState,
    result: ConnectivityResult,
    now: Optional[float] = None,
) -> None:
    """Advance the up/down state machine with one probe outcome.

    Backoff grows linearly by `outage_backoff` per failed probe while down and
    is capped at `outage_backoff_max`.
    """
    now = time.monotonic() if now is None else now
    connectivity = config.connectivity
    state.last_connectivity_success = result.success

    if result.success:
        if state.outage_active:
            state.outage_active = False
            state.pending_outage_end = OutageInfo(
                started_at=state.outage_start or result.timestamp,
                ended_at=result.timestamp,
            )
            state.outage_start = None
            state.pending_speed_after_restore = True
        state.current_connectivity_delay = connectivity.delay
    elif not state.outage_active:
        state.outage_active = True
        state.outage_start = result.timestamp
        state.current_connectivity_delay = connectivity.outage_backoff
    else:
        state.current_connectivity_delay = min(
            state.current_connectivity_delay + connectivity.outage_backoff,
            connectivity.outage_backoff_max,
        )

    state.next_connectivity_at = now + state.current_connectivity_delay.total_seconds()


def speed_due(state: LoopState, now: Optional[float] = None) -> bool:
    if state.pending_speed_after_restore:
        return True
    now = time.monotonic() if now is None else now
    return now >= state.next_speed_at


def should_run_speed_check(state: LoopState, now: Optional[float] = None) -> bool:
    """Due and the link is up; a check forced by recovery always runs."""
    if not speed_due(state, now):
        return False
    return state.last_connectivity_success or state.pending_speed_after_restore


def handle_speed_result(
    config: Config,
    state: LoopState,
    result: SpeedResult,
    now: Optional[float] = None,
) -> SpeedDecision:
    now = time.monotonic() if now is None else now
    outage_ended = None
    if state.pending_speed_after_restore:
        outage_ended = state.pending_outage_end
        state.pending_outage_end = None
        state.pending_speed_after_restore = False

    state.next_speed_at = now + config.speed.delay.total_seconds()

    if not result.success:
        return SpeedDecision(outage_ended, download_changed=False, upload_changed=False, notify_change=False)

    download_changed = state.last_download_threshold != result.download_threshold
    upload_changed = state.last_upload_threshold != result.upload_threshold

    floors = config.notifications
    download_notify = result.download_threshold.is_at_or_below(floors.min_download_threshold)
    upload_notify = result.upload_threshold is not None and result.upload_threshold.is_at_or_below(
        floors.min_upload_threshold
    )

    state.last_download_threshold = result.download_threshold
    state.last_upload_threshold = result.upload_threshold

    return SpeedDecision(
        outage_ended=outage_ended,
        download_changed=download_changed,
        upload_changed=upload_changed,
        notify_change=(download_changed or upload_changed) and (download_notify or upload_notify),
    )
