import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from concord.common.errors import CertificateParseError
from concord.design.policies import organization_policies


logger = logging.getLogger(__name__)


OU_CLIENT = "client"
OU_PEER = "peer"
OU_ADMIN = "admin"
OU_ORDERER = "orderer"


def parse_certificate(pem, what="certificate"):
    """Parses a PEM encoded X.509 certificate

    Arguments:
        pem {str|bytes} -- The PEM encoded certificate
        what {str} -- Description of the certificate used in errors

    Raises:
        CertificateParseError -- If pem is empty or not a valid certificate

    Returns:
        x509.Certificate -- The parsed certificate
    """
    if not pem:
        raise CertificateParseError(f"{what} is empty")

    data = pem.encode("utf-8") if isinstance(pem, str) else pem

    try:
        return x509.load_pem_x509_certificate(data)
    except (ValueError, TypeError) as e:
        raise CertificateParseError(f"{what} is not a valid PEM X.509 certificate: {e}")


def normalize_certificate(pem, what="certificate"):
    cert = parse_certificate(pem, what)
    return cert.public_bytes(Encoding.PEM).decode("utf-8")


@dataclass(frozen=True)
class NodeOUs:
    enable: bool = True
    certificate: str = ""
    client: str = OU_CLIENT
    peer: str = OU_PEER
    admin: str = OU_ADMIN
    orderer: str = OU_ORDERER

    def dump(self):
        def identifier(ou):
            return {
                "Certificate": self.certificate,
                "OrganizationalUnitIdentifier": ou,
            }

        return {
            "Enable": self.enable,
            "ClientOUIdentifier": identifier(self.client),
            "PeerOUIdentifier": identifier(self.peer),
            "AdminOUIdentifier": identifier(self.admin),
            "OrdererOUIdentifier": identifier(self.orderer),
        }

    @classmethod
    def load(cls, data):
        def ou(key, default):
            return data.get(key, {}).get("OrganizationalUnitIdentifier", default)

        return cls(
            enable=data.get("Enable", False),
            certificate=data.get("ClientOUIdentifier", {}).get("Certificate", ""),
            client=ou("ClientOUIdentifier", OU_CLIENT),
            peer=ou("PeerOUIdentifier", OU_PEER),
            admin=ou("AdminOUIdentifier", OU_ADMIN),
            orderer=ou("OrdererOUIdentifier", OU_ORDERER),
        )


@dataclass(frozen=True)
class OrganizationConfig:
    """Canonical configuration of one channel member organization"""

    msp_id: str
    root_certs: tuple
    tls_root_certs: tuple
    node_ous: NodeOUs
    policies: dict
    intermediate_certs: tuple = ()
    tls_intermediate_certs: tuple = ()
    orderer_endpoints: tuple = ()
    anchor_peers: tuple = ()
    mod_policy: str = ""

    @property
    def name(self):
        return self.msp_id

    def dump(self):
        return {
            "Name": self.msp_id,
            "ID": self.msp_id,
            "MSP": {
                "Name": self.msp_id,
                "RootCerts": list(self.root_certs),
                "IntermediateCerts": list(self.intermediate_certs),
                "TLSRootCerts": list(self.tls_root_certs),
                "TLSIntermediateCerts": list(self.tls_intermediate_certs),
                "NodeOUs": self.node_ous.dump(),
                "Admins": [],
                "RevocationList": [],
                "OrganizationalUnitIdentifiers": [],
            },
            "Policies": {k: dict(v) for k, v in self.policies.items()},
            "OrdererEndpoints": list(self.orderer_endpoints),
            "AnchorPeers": [dict(a) for a in self.anchor_peers],
            "ModPolicy": self.mod_policy,
        }

    @classmethod
    def load(cls, data):
        """Rebuilds an organization from its dumped form

        Raises:
            KeyError, TypeError, AttributeError -- If data is not a dumped
            organization; callers translate those into their own errors
        """
        msp = data["MSP"]
        return cls(
            msp_id=data["Name"],
            root_certs=tuple(msp.get("RootCerts", [])),
            tls_root_certs=tuple(msp.get("TLSRootCerts", [])),
            node_ous=NodeOUs.load(msp.get("NodeOUs", {})),
            policies={k: dict(v) for k, v in data.get("Policies", {}).items()},
            intermediate_certs=tuple(msp.get("IntermediateCerts", [])),
            tls_intermediate_certs=tuple(msp.get("TLSIntermediateCerts", [])),
            orderer_endpoints=tuple(data.get("OrdererEndpoints", [])),
            anchor_peers=tuple(dict(a) for a in data.get("AnchorPeers", [])),
            mod_policy=data.get("ModPolicy", ""),
        )


def map_organization(msp_id, sign_ca_pem, tls_ca_pem, orderer_endpoints=()):
    """Maps the identity material of an organization to its channel config

    Arguments:
        msp_id {str} -- The MSP identifier of the organization
        sign_ca_pem {str} -- PEM of the signing root certificate
        tls_ca_pem {str} -- PEM of the TLS root certificate
        orderer_endpoints {list} -- host:port of the organization orderers

    Raises:
        CertificateParseError -- If any certificate is not well-formed

    Returns:
        OrganizationConfig -- Organization with node OUs enabled
    """
    root_cert = normalize_certificate(sign_ca_pem, f"{msp_id} signing root certificate")
    tls_root_cert = normalize_certificate(tls_ca_pem, f"{msp_id} TLS root certificate")

    org = OrganizationConfig(
        msp_id=msp_id,
        root_certs=(root_cert,),
        tls_root_certs=(tls_root_cert,),
        node_ous=NodeOUs(enable=True, certificate=root_cert),
        policies=organization_policies(msp_id),
        orderer_endpoints=tuple(orderer_endpoints),
    )
    logger.debug("Organization mapped %s", msp_id)
    return org
