#!/usr/bin/env python3
"""
Metric Catalog

Static set of gauge descriptors exposed by the exporter. The catalog is built
once at startup and shared read-only by every scrape.
"""

from typing import Dict, Iterator, List, Sequence, Tuple

from prometheus_client.core import GaugeMetricFamily

NAMESPACE = 'wallix_bastion'

# Value emitted for an encryption status or security level outside the known vocabulary
UNMAPPED_STATUS = -2

ENCRYPTION_STATUS_VALUES = {
    'need_setup': 0,
    'ready': 1,
    'need_passphrase': 2,
    '[hidden]': -1,
}

ENCRYPTION_SECURITY_LEVEL_VALUES = {
    'need_setup': 0,
    'passphrase_defined': 1,
    'passphrase_not_used': 2,
    '[hidden]': -1,
}

# (license field, metric suffix, help subject)
LICENSE_RATIOS = (
    ('primary', 'license_primary_ratio', 'primary'),
    ('secondary', 'license_secondary_ratio', 'secondary'),
    ('named_user', 'license_named_user_ratio', 'named user'),
    ('resource', 'license_resource_ratio', 'resource'),
    ('waapm', 'license_waapm_ratio', 'waapm'),
    ('pm_target', 'license_pm_target_ratio', 'pm target'),
    ('sm_target', 'license_sm_target_ratio', 'sm target'),
)


def _vocabulary_help(values: Dict[str, int]) -> str:
    known = ', '.join(f"{key}={value}" for key, value in values.items())
    return f"{known}, unknown={UNMAPPED_STATUS}"


class MetricDescriptor:
    """Immutable gauge descriptor: fully qualified name, help text, label names"""

    __slots__ = ('_name', '_documentation', '_labelnames')

    def __init__(self, name: str, documentation: str, labelnames: Sequence[str] = ()):
        self._name = name
        self._documentation = documentation
        self._labelnames = tuple(labelnames)

    @property
    def name(self) -> str:
        return self._name

    @property
    def documentation(self) -> str:
        return self._documentation

    @property
    def labelnames(self) -> Tuple[str, ...]:
        return self._labelnames

    def family(self) -> GaugeMetricFamily:
        """Create an empty gauge family for this descriptor"""
        return GaugeMetricFamily(self._name, self._documentation, labels=list(self._labelnames))

    def __eq__(self, other):
        if not isinstance(other, MetricDescriptor):
            return NotImplemented
        return (self._name, self._documentation, self._labelnames) == \
            (other._name, other._documentation, other._labelnames)

    def __hash__(self):
        return hash((self._name, self._documentation, self._labelnames))

    def __repr__(self):
        return f"MetricDescriptor({self._name!r}, labelnames={list(self._labelnames)})"


class MetricCatalog:
    """Registry of every descriptor the exporter can emit, keyed by short name"""

    def __init__(self, namespace: str = NAMESPACE, sessions_closed_minutes: int = 5):
        self.namespace = namespace
        self.sessions_closed_minutes = sessions_closed_minutes
        self._descriptors: Dict[str, MetricDescriptor] = {}

        self._add('up', 'Was able to request and authenticate to Wallix Bastion API successfully.')
        self._add('users', 'Current number of users.')
        self._add('groups', 'Current number of groups.')
        self._add('devices', 'Current number of devices.')
        self._add('sessions',
                  f'Number of current sessions and of sessions closed during the last {sessions_closed_minutes}m.',
                  ['status'])
        self._add('targets', 'Current number of targets.', ['type'])
        self._add('encryption_status',
                  f'Encryption status ({_vocabulary_help(ENCRYPTION_STATUS_VALUES)}).',
                  ['status', 'security_level'])
        self._add('encryption_security_level',
                  f'Encryption security level ({_vocabulary_help(ENCRYPTION_SECURITY_LEVEL_VALUES)}).',
                  ['security_level', 'status'])
        self._add('license_is_expired', 'Is the Wallix license expired (0=false, 1=true).')
        for _, suffix, subject in LICENSE_RATIOS:
            self._add(suffix, f'License usage ratio of {subject}.')

    def _add(self, short_name: str, documentation: str, labelnames: List[str] = None):
        name = f"{self.namespace}_{short_name}" if self.namespace else short_name
        self._descriptors[short_name] = MetricDescriptor(name, documentation, labelnames or [])

    def __getitem__(self, short_name: str) -> MetricDescriptor:
        return self._descriptors[short_name]

    def __contains__(self, short_name: str) -> bool:
        return short_name in self._descriptors

    def __iter__(self) -> Iterator[MetricDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def names(self) -> List[str]:
        """Short names in declaration order"""
        return list(self._descriptors)

    def __repr__(self):
        return f"MetricCatalog(namespace={self.namespace!r}, metrics={len(self)})"
