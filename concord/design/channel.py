import re
import logging
from dataclasses import dataclass, field

from concord.common.errors import ChannelParameterError, OrganizationResolutionError
from concord.design.orgs import map_organization, normalize_certificate
from concord.design.policies import (
    default_acls,
    application_policies,
    orderer_policies,
    channel_policies,
)


logger = logging.getLogger(__name__)


MiB = 1024 * 1024
KiB = 1024

ORDERER_TYPE = "etcdraft"
ORDERER_STATE = "STATE_NORMAL"
CAPABILITIES = ("V2_0",)

ETCDRAFT_OPTIONS = {
    "TickInterval": "500ms",
    "ElectionTick": 10,
    "HeartbeatTick": 1,
    "MaxInflightBlocks": 5,
    "SnapshotIntervalSize": 16 * MiB,
}

BATCH_TIMEOUT = "2s"

BATCH_SIZE = {
    "MaxMessageCount": 100,
    "AbsoluteMaxBytes": 1 * MiB,
    "PreferredMaxBytes": 512 * KiB,
}

DURATION = re.compile(r"^(\d+(\.\d+)?(ns|us|ms|s|m|h))+$")

# channel spec keys (snake case) to configtx keys
ETCDRAFT_KEYS = {
    "tick_interval": "TickInterval",
    "election_tick": "ElectionTick",
    "heartbeat_tick": "HeartbeatTick",
    "max_inflight_blocks": "MaxInflightBlocks",
    "snapshot_interval_size": "SnapshotIntervalSize",
}

BATCH_SIZE_KEYS = {
    "max_message_count": "MaxMessageCount",
    "absolute_max_bytes": "AbsoluteMaxBytes",
    "preferred_max_bytes": "PreferredMaxBytes",
}


def check_duration(value, what):
    if not isinstance(value, str) or not DURATION.match(value):
        raise ChannelParameterError(f"{what} {value!r} is not a valid duration")
    return value


@dataclass(frozen=True)
class NodeRef:
    """An ordering node admin endpoint"""

    host: str
    admin_port: int
    name: str = ""
    namespace: str = ""

    @property
    def url(self):
        return f"https://{self.host}:{self.admin_port}"

    @property
    def label(self):
        if self.name and self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name or self.host

    @classmethod
    def parse(cls, data):
        return cls(
            host=data["host"],
            admin_port=int(data["admin_port"]),
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
        )


@dataclass(frozen=True)
class OrganizationRef:
    """An organization as declared in a channel spec

    Cluster managed organizations reference their certificate authority
    (ca_name, ca_namespace), external ones carry both root certificates.
    """

    msp_id: str
    ca_name: str = ""
    ca_namespace: str = ""
    sign_ca_cert: str = ""
    tls_ca_cert: str = ""
    external: bool = False
    orderer_endpoints: tuple = ()
    orderers_to_join: tuple = ()
    external_orderers_to_join: tuple = ()

    @property
    def has_certs(self):
        return bool(self.sign_ca_cert and self.tls_ca_cert)

    @property
    def has_ca(self):
        return bool(self.ca_name and self.ca_namespace)

    @classmethod
    def parse(cls, data, external=False):
        return cls(
            msp_id=data["msp_id"],
            ca_name=data.get("ca_name", ""),
            ca_namespace=data.get("ca_namespace", ""),
            sign_ca_cert=data.get("sign_ca_cert") or data.get("sign_root_cert", ""),
            tls_ca_cert=data.get("tls_ca_cert") or data.get("tls_root_cert", ""),
            external=external,
            orderer_endpoints=tuple(data.get("orderer_endpoints", [])),
            orderers_to_join=tuple(
                NodeRef.parse(n) for n in data.get("orderers_to_join", [])
            ),
            external_orderers_to_join=tuple(
                NodeRef.parse(n) for n in data.get("external_orderers_to_join", [])
            ),
        )


@dataclass(frozen=True)
class ConsenterConfig:
    host: str
    port: int
    tls_cert: str

    def dump(self):
        return {
            "Host": self.host,
            "Port": self.port,
            "ClientTLSCert": self.tls_cert,
            "ServerTLSCert": self.tls_cert,
        }

    @classmethod
    def parse(cls, data):
        return cls(host=data["host"], port=int(data["port"]), tls_cert=data["tls_cert"])


@dataclass(frozen=True)
class ChannelSpec:
    """Declarative target state of a channel"""

    name: str
    peer_organizations: tuple = ()
    orderer_organizations: tuple = ()
    consenters: tuple = ()
    admin_peer_organizations: tuple = ()
    admin_orderer_organizations: tuple = ()
    batch_timeout: str = ""
    batch_size: dict = field(default_factory=dict)
    etcdraft_options: dict = field(default_factory=dict)
    capabilities: tuple = CAPABILITIES
    identities: dict = field(default_factory=dict)

    @classmethod
    def parse(cls, data):
        """Builds a channel spec from its mapping (e.g., YAML) form

        Arguments:
            data {dict} -- Channel spec with keys name, peer_organizations,
            external_peer_organizations, orderer_organizations,
            external_orderer_organizations, consenters,
            admin_peer_organizations, admin_orderer_organizations,
            channel_config and identities

        Returns:
            ChannelSpec -- The parsed spec
        """
        peer_orgs = [OrganizationRef.parse(o) for o in data.get("peer_organizations") or []]
        peer_orgs += [
            OrganizationRef.parse(o, external=True)
            for o in data.get("external_peer_organizations") or []
        ]

        orderer_orgs = [
            OrganizationRef.parse(o) for o in data.get("orderer_organizations") or []
        ]
        orderer_orgs += [
            OrganizationRef.parse(o, external=True)
            for o in data.get("external_orderer_organizations") or []
        ]

        def msp_ids(key):
            return tuple(
                o["msp_id"] if isinstance(o, dict) else o for o in data.get(key) or []
            )

        channel_config = data.get("channel_config") or {}
        orderer = channel_config.get("orderer") or {}
        etcdraft = orderer.get("etcd_raft") or {}

        return cls(
            name=data["name"],
            peer_organizations=tuple(peer_orgs),
            orderer_organizations=tuple(orderer_orgs),
            consenters=tuple(ConsenterConfig.parse(c) for c in data.get("consenters") or []),
            admin_peer_organizations=msp_ids("admin_peer_organizations"),
            admin_orderer_organizations=msp_ids("admin_orderer_organizations"),
            batch_timeout=orderer.get("batch_timeout", ""),
            batch_size=dict(orderer.get("batch_size") or {}),
            etcdraft_options=dict(etcdraft.get("options") or {}),
            capabilities=tuple(channel_config.get("capabilities") or CAPABILITIES),
            identities=dict(data.get("identities") or {}),
        )


@dataclass(frozen=True)
class ChannelConfig:
    """Complete configuration of an application channel"""

    name: str
    application_organizations: tuple
    orderer_organizations: tuple
    consenters: tuple
    application_policies: dict
    orderer_policies: dict
    policies: dict
    acls: dict
    etcdraft_options: dict
    batch_size: dict
    batch_timeout: str = BATCH_TIMEOUT
    capabilities: tuple = CAPABILITIES

    def organization_ids(self):
        return [org.msp_id for org in self.application_organizations]

    def dump(self):
        capabilities = list(self.capabilities)
        return {
            "Name": self.name,
            "Capabilities": capabilities,
            "Policies": {k: dict(v) for k, v in self.policies.items()},
            "Orderer": {
                "OrdererType": ORDERER_TYPE,
                "Organizations": [org.dump() for org in self.orderer_organizations],
                "EtcdRaft": {
                    "Consenters": [c.dump() for c in self.consenters],
                    "Options": dict(self.etcdraft_options),
                },
                "Policies": {k: dict(v) for k, v in self.orderer_policies.items()},
                "Capabilities": capabilities,
                "BatchSize": dict(self.batch_size),
                "BatchTimeout": self.batch_timeout,
                "State": ORDERER_STATE,
            },
            "Application": {
                "Organizations": [org.dump() for org in self.application_organizations],
                "Capabilities": capabilities,
                "Policies": {k: dict(v) for k, v in self.application_policies.items()},
                "ACLs": dict(self.acls),
            },
        }

    def genesis_block(self):
        return {
            "header": {"number": 0},
            "channel": self.name,
            "config": self.dump(),
        }


class ChannelConfigBuilder:
    """Assembles the target channel configuration of a channel spec

    Cluster managed organizations are resolved through resolver, an object
    exposing resolve(ca_name, ca_namespace) that returns the pair
    (sign_ca_pem, tls_ca_pem) of the certificate authority.
    """

    def __init__(self, resolver=None):
        self.resolver = resolver

    def resolve(self, ref):
        if ref.has_certs:
            return ref.sign_ca_cert, ref.tls_ca_cert

        if ref.external:
            raise OrganizationResolutionError(
                f"external organization {ref.msp_id} must define its signing and TLS root certificates"
            )

        if not ref.has_ca:
            raise OrganizationResolutionError(
                f"organization {ref.msp_id} defines neither a certificate authority nor root certificates"
            )

        if self.resolver is None:
            raise OrganizationResolutionError(
                f"no certificate authority resolver for organization {ref.msp_id}"
            )

        try:
            certs = self.resolver.resolve(ref.ca_name, ref.ca_namespace)
        except LookupError as e:
            raise OrganizationResolutionError(
                f"certificate authority {ref.ca_namespace}/{ref.ca_name} of organization {ref.msp_id} not found: {e}"
            )

        if not certs:
            raise OrganizationResolutionError(
                f"certificate authority {ref.ca_namespace}/{ref.ca_name} of organization {ref.msp_id} not found"
            )

        return certs

    def map_organizations(self, refs, orderer=False):
        orgs = []
        for ref in refs:
            sign_ca_pem, tls_ca_pem = self.resolve(ref)
            endpoints = ref.orderer_endpoints if orderer else ()
            orgs.append(map_organization(ref.msp_id, sign_ca_pem, tls_ca_pem, endpoints))
        return orgs

    def check_admins(self, admins, orgs, section):
        known = {org.msp_id for org in orgs}
        unknown = [msp_id for msp_id in admins if msp_id not in known]
        if unknown:
            raise OrganizationResolutionError(
                f"{section} admin organizations {unknown} are not members of the channel"
            )

    def check_unique(self, orgs):
        seen = set()
        for org in orgs:
            if org.msp_id in seen:
                raise OrganizationResolutionError(
                    f"MSP id {org.msp_id} declared more than once"
                )
            seen.add(org.msp_id)

    def map_consenters(self, consenters):
        return tuple(
            ConsenterConfig(
                host=c.host,
                port=c.port,
                tls_cert=normalize_certificate(
                    c.tls_cert, f"consenter {c.host}:{c.port} TLS certificate"
                ),
            )
            for c in consenters
        )

    def etcdraft(self, spec):
        options = dict(ETCDRAFT_OPTIONS)
        for key, value in spec.etcdraft_options.items():
            options[ETCDRAFT_KEYS.get(key, key)] = value
        check_duration(options["TickInterval"], "etcdraft tick interval")
        return options

    def batch(self, spec):
        size = dict(BATCH_SIZE)
        for key, value in spec.batch_size.items():
            name = BATCH_SIZE_KEYS.get(key, key)
            try:
                size[name] = int(value)
            except (TypeError, ValueError):
                raise ChannelParameterError(f"batch size {key} {value!r} is not an integer")

        timeout = spec.batch_timeout or BATCH_TIMEOUT
        check_duration(timeout, "batch timeout")
        return size, timeout

    def build(self, spec, consenters=None):
        """Builds the target configuration of a channel

        Arguments:
            spec {ChannelSpec} -- Declarative target of the channel
            consenters {list} -- Consenters overriding the spec ones

        Raises:
            OrganizationResolutionError -- If an organization can not be resolved
            CertificateParseError -- If any certificate is not well-formed
            ChannelParameterError -- If a duration or batch size is invalid

        Returns:
            ChannelConfig -- The target channel configuration
        """
        logger.info("Building config of channel %s", spec.name)

        peer_orgs = self.map_organizations(spec.peer_organizations)
        orderer_orgs = self.map_organizations(spec.orderer_organizations, orderer=True)

        self.check_unique(peer_orgs + orderer_orgs)
        self.check_admins(spec.admin_peer_organizations, peer_orgs, "application")
        self.check_admins(spec.admin_orderer_organizations, orderer_orgs, "orderer")

        consenters = spec.consenters if consenters is None else consenters
        batch_size, batch_timeout = self.batch(spec)

        config = ChannelConfig(
            name=spec.name,
            application_organizations=tuple(peer_orgs),
            orderer_organizations=tuple(orderer_orgs),
            consenters=self.map_consenters(consenters),
            application_policies=application_policies(spec.admin_peer_organizations),
            orderer_policies=orderer_policies(spec.admin_orderer_organizations),
            policies=channel_policies(),
            acls=default_acls(),
            etcdraft_options=self.etcdraft(spec),
            batch_size=batch_size,
            batch_timeout=batch_timeout,
            capabilities=tuple(spec.capabilities),
        )

        logger.info(
            "Channel %s config built - peer orgs %s, orderer orgs %s, consenters %s",
            spec.name,
            config.organization_ids(),
            [org.msp_id for org in orderer_orgs],
            len(config.consenters),
        )
        return config
