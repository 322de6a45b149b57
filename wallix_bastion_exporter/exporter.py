#!/usr/bin/env python3
"""
Wallix Bastion Prometheus Exporter

Custom prometheus-client collector. Every scrape logs in to the bastion API
once, then fans out one task per metric family on the same HTTP session.
A failing family is logged and left out of the scrape, the others still
report.
"""

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional

from prometheus_client.core import GaugeMetricFamily

from .api_client import TARGET_TYPES, WallixClient
from .catalog import (ENCRYPTION_SECURITY_LEVEL_VALUES, ENCRYPTION_STATUS_VALUES, LICENSE_RATIOS,
                      UNMAPPED_STATUS, MetricCatalog)
from .config import ExporterConfig
from .errors import WallixError
from .sink import SampleSink

logger = logging.getLogger(__name__)


class ScrapeState(Enum):
    IDLE = 'idle'
    AUTHENTICATING = 'authenticating'
    FAILED = 'failed'
    GATHERING = 'gathering'
    DONE = 'done'


def get_number(document: Mapping[str, Any], key: str) -> Optional[float]:
    """Numeric field or None when absent or not a number"""
    value = document.get(key)
    # bool is an int subclass but never a count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def get_bool(document: Mapping[str, Any], key: str) -> Optional[bool]:
    value = document.get(key)
    return value if isinstance(value, bool) else None


def get_string(document: Mapping[str, Any], key: str) -> Optional[str]:
    value = document.get(key)
    return value if isinstance(value, str) else None


def license_ratio(license_info: Mapping[str, Any], field: str) -> Optional[float]:
    """
    Usage ratio `field / field_max`.

    A missing or non numeric usage counts as 0. Without a usable maximum
    (absent, not numeric or 0) there is no ratio.
    """
    maximum = get_number(license_info, f"{field}_max")
    if maximum is None:
        return None
    if maximum == 0:
        logger.debug(f"License {field}_max is 0, skipping {field} ratio")
        return None
    used = get_number(license_info, field)
    if used is None:
        used = 0.0
    return used / maximum


def map_status(vocabulary: Mapping[str, int], value: str, what: str) -> int:
    if value in vocabulary:
        return vocabulary[value]
    logger.warning(f"Unknown {what} {value!r}, reporting {UNMAPPED_STATUS}")
    return UNMAPPED_STATUS


class WallixBastionExporter:
    """Prometheus collector for one Wallix Bastion API"""

    def __init__(self, config: ExporterConfig, catalog: MetricCatalog = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config
        self.catalog = catalog or MetricCatalog(sessions_closed_minutes=config.sessions_closed_minutes)
        self.clock = clock
        self.last_state = ScrapeState.IDLE
        self.logger = logging.getLogger(__name__)

    def describe(self) -> Iterator[GaugeMetricFamily]:
        for descriptor in self.catalog:
            yield descriptor.family()

    def collect(self) -> Iterator[GaugeMetricFamily]:
        """Run one scrape cycle; called by the registry on every HTTP pull"""
        sink = asyncio.run(self.scrape())
        yield from sink.families()

    def build_client(self) -> WallixClient:
        return WallixClient(
            self.config.scrape_uri,
            timeout=self.config.timeout,
            skip_verify=self.config.skip_verify,
        )

    async def scrape(self) -> SampleSink:
        """Authenticate, then gather every metric family concurrently"""
        sink = SampleSink(self.catalog)
        start_time = time.time()

        async with self.build_client() as client:
            self.last_state = ScrapeState.AUTHENTICATING
            if not await self.authenticate(sink, client):
                self.last_state = ScrapeState.FAILED
                return sink

            self.last_state = ScrapeState.GATHERING
            await self.gather(sink, client)

        self.last_state = ScrapeState.DONE
        elapsed = time.time() - start_time
        self.logger.info(f"Collected {len(sink)} samples from {self.config.scrape_uri} in {elapsed:.2f}s")
        return sink

    async def authenticate(self, sink: SampleSink, client: WallixClient) -> bool:
        """
        First request of a scrape. It:
        - determines the "up" metric
        - prevents fetching other metrics if down
        - stores the session cookie so later requests need no basic auth
        """
        try:
            await client.authenticate(self.config.wallix_username, self.config.wallix_password)
        except WallixError as e:
            self.logger.error(f"Wallix authentication failed: {e}")
            sink.add('up', 0)
            return False

        sink.add('up', 1)
        return True

    def _gathering_tasks(self, sink: SampleSink, client: WallixClient) -> Dict[str, Awaitable[None]]:
        tasks = {
            'users': self._gather_count(sink, 'users', client.get_users, 'users'),
            'groups': self._gather_count(sink, 'groups', client.get_groups, 'groups'),
            'devices': self._gather_count(sink, 'devices', client.get_devices, 'devices'),
        }
        for target_type in TARGET_TYPES:
            tasks[f'targets:{target_type}'] = self._gather_count(
                sink, f'{target_type} targets', partial(client.get_targets, target_type),
                'targets', target_type
            )
        tasks['sessions:current'] = self._gather_count(
            sink, 'current sessions', client.get_current_sessions, 'sessions', 'current'
        )
        tasks['sessions:closed'] = self._gather_count(
            sink, 'closed sessions',
            partial(client.get_closed_sessions, self.config.sessions_closed_minutes, now=self.clock()),
            'sessions', 'closed'
        )
        tasks['encryption'] = self._gather_encryption(sink, client)
        tasks['license'] = self._gather_license(sink, client)
        return tasks

    async def gather(self, sink: SampleSink, client: WallixClient):
        """Run all family tasks concurrently and wait for every one of them"""
        tasks = self._gathering_tasks(sink, client)
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)

        failed: List[str] = []
        for family, result in zip(tasks, results):
            if isinstance(result, BaseException):
                failed.append(family)
                self.logger.error(f"Unexpected error while gathering {family}: {result!r}", exc_info=result)
        if failed:
            self.logger.debug(f"Families without samples this scrape: {failed}")

    async def _gather_count(self, sink: SampleSink, what: str,
                            fetch: Callable[[], Awaitable[List[Dict[str, Any]]]],
                            metric: str, *labelvalues: str):
        try:
            records = await fetch()
        except WallixError as e:
            self.logger.warning(f"cannot get {what}: {e}")
            return
        sink.add(metric, len(records), *labelvalues)

    async def _gather_encryption(self, sink: SampleSink, client: WallixClient):
        try:
            encryption_info = await client.get_encryption()
        except WallixError as e:
            self.logger.warning(f"cannot get encryption information: {e}")
            return

        status = get_string(encryption_info, 'encryption')
        security_level = get_string(encryption_info, 'security_level')
        if status is None or security_level is None:
            self.logger.warning(f"Incomplete encryption information: {encryption_info}")
            return

        sink.add('encryption_status',
                 map_status(ENCRYPTION_STATUS_VALUES, status, 'encryption status'),
                 status, security_level)
        sink.add('encryption_security_level',
                 map_status(ENCRYPTION_SECURITY_LEVEL_VALUES, security_level, 'encryption security level'),
                 security_level, status)

    async def _gather_license(self, sink: SampleSink, client: WallixClient):
        try:
            license_info = await client.get_license()
        except WallixError as e:
            self.logger.warning(f"cannot get license information: {e}")
            return

        is_expired = get_bool(license_info, 'is_expired')
        if is_expired is None:
            is_valid = get_bool(license_info, 'is_valid')
            if is_valid is not None:
                is_expired = not is_valid
        if is_expired is not None:
            sink.add('license_is_expired', 1 if is_expired else 0)

        for field, metric, _ in LICENSE_RATIOS:
            ratio = license_ratio(license_info, field)
            if ratio is not None:
                sink.add(metric, ratio)

    def __repr__(self):
        return f"WallixBastionExporter(scrape_uri={self.config.scrape_uri!r}, state={self.last_state.value})"
