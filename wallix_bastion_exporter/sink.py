#!/usr/bin/env python3
"""
Sample Sink - per-scrape metric sample storage

Gathering tasks of one scrape write gauge samples here concurrently. Once the
scrape is over the sink renders them as Prometheus metric families.
"""

import threading
import logging
from typing import Dict, Iterator, List, Tuple

from prometheus_client.core import GaugeMetricFamily

from .catalog import MetricCatalog


class SampleSink:
    """
    Many-producer funnel for the samples of a single scrape.

    Samples keep their insertion order within a family; no ordering is
    guaranteed across families.
    """

    def __init__(self, catalog: MetricCatalog):
        self.catalog = catalog
        self._samples: Dict[str, List[Tuple[Tuple[str, ...], float]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def add(self, short_name: str, value: float, *labelvalues: str):
        """
        Record one sample.

        Args:
            short_name: Catalog key of the descriptor
            value: Gauge value
            labelvalues: Label values, in the descriptor's label order

        Raises:
            KeyError: unknown descriptor
            ValueError: label values do not match the descriptor's label names
        """
        descriptor = self.catalog[short_name]
        if len(labelvalues) != len(descriptor.labelnames):
            raise ValueError(
                f"{descriptor.name} expects labels {list(descriptor.labelnames)}, got {list(labelvalues)}"
            )
        with self._lock:
            self._samples.setdefault(short_name, []).append((tuple(labelvalues), float(value)))

    def get(self, short_name: str) -> List[Tuple[Tuple[str, ...], float]]:
        """Return (labelvalues, value) pairs recorded for a descriptor"""
        with self._lock:
            return list(self._samples.get(short_name, []))

    def value(self, short_name: str, *labelvalues: str) -> float:
        """Return the value of one sample, KeyError if it was not emitted"""
        for labels, value in self.get(short_name):
            if labels == tuple(labelvalues):
                return value
        raise KeyError((short_name, labelvalues))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(samples) for samples in self._samples.values())

    def families(self) -> Iterator[GaugeMetricFamily]:
        """Yield one gauge family per descriptor that received samples"""
        with self._lock:
            snapshot = {name: list(samples) for name, samples in self._samples.items()}
        for short_name in self.catalog.names():
            samples = snapshot.get(short_name)
            if not samples:
                continue
            family = self.catalog[short_name].family()
            for labelvalues, value in samples:
                family.add_metric(list(labelvalues), value)
            yield family

    def __repr__(self):
        return f"SampleSink(samples={len(self)})"
