import copy
import logging
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from concord.broker.signer import SigningIdentity
from concord.common.codec import parse_bytes
from concord.common.errors import SubmissionRejectedError
from concord.broker.differ import ConfigUpdate
from concord.broker.plugins.ordering import OrderingService


logger = logging.getLogger(__name__)


def key_pem(key):
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")


def cert_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def make_cert(common_name, key=None, issuer=None, issuer_key=None, ca=False):
    """Generates an X.509 certificate for tests

    Arguments:
        common_name {str} -- Subject common name
        key -- Private key of the subject, a new P-256 key if None
        issuer {x509.Certificate} -- Issuer certificate, self-signed if None
        issuer_key -- Private key of the issuer

    Returns:
        tuple -- The certificate and the subject private key
    """
    key = key if key else ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_name = issuer.subject if issuer else subject
    signer = issuer_key if issuer_key else key

    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .sign(signer, hashes.SHA256())
    )
    return cert, key


class FakeOrg:
    """Certificate authorities and admin identity of one test organization"""

    def __init__(self, msp_id):
        self.msp_id = msp_id
        self.ca_cert, self.ca_key = make_cert(f"ca.{msp_id}", ca=True)
        self.tls_ca_cert, self.tls_ca_key = make_cert(f"tlsca.{msp_id}", ca=True)
        self.admin_cert, self.admin_key = make_cert(
            f"admin.{msp_id}", issuer=self.ca_cert, issuer_key=self.ca_key
        )

    @property
    def sign_ca_pem(self):
        return cert_pem(self.ca_cert)

    @property
    def tls_ca_pem(self):
        return cert_pem(self.tls_ca_cert)

    @property
    def admin_cert_pem(self):
        return cert_pem(self.admin_cert)

    @property
    def admin_key_pem(self):
        return key_pem(self.admin_key)

    def identity(self):
        return SigningIdentity.from_pem(self.msp_id, self.admin_cert_pem, self.admin_key_pem)

    def ref(self, **kwargs):
        data = {
            "msp_id": self.msp_id,
            "sign_ca_cert": self.sign_ca_pem,
            "tls_ca_cert": self.tls_ca_pem,
        }
        data.update(kwargs)
        return data

    def identity_yaml(self):
        return {"cert": {"pem": self.admin_cert_pem}, "key": {"pem": self.admin_key_pem}}


def rsa_key_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key_pem(key)


class StaticIdentityStore:
    def __init__(self, orgs):
        self.identities = {org.msp_id: org.identity() for org in orgs}
        self.requests = []

    def get(self, msp_id):
        self.requests.append(msp_id)
        if msp_id not in self.identities:
            raise LookupError(f"no identity for {msp_id}")
        return self.identities[msp_id]


class MemoryOrderingService(OrderingService):
    """Ordering service keeping channel config blocks in memory

    fetch_failures is the number of fetches that fail before blocks are
    served; apply_updates controls whether submitted updates advance the
    channel config.
    """

    def __init__(self, blocks=None, fetch_failures=0, apply_updates=True, reject=False):
        self.blocks = dict(blocks or {})
        self.fetch_failures = fetch_failures
        self.apply_updates = apply_updates
        self.reject = reject
        self.fetches = 0
        self.submitted = []

    async def fetch_config_block(self, channel):
        self.fetches += 1
        if self.fetches <= self.fetch_failures:
            raise ConnectionError(f"ordering service unavailable (fetch {self.fetches})")

        if channel not in self.blocks:
            raise LookupError(f"channel {channel} not found")

        return copy.deepcopy(self.blocks[channel])

    async def submit(self, envelope):
        self.submitted.append(envelope)
        if self.reject:
            raise SubmissionRejectedError("BAD_REQUEST: config update rejected")

        if self.apply_updates:
            update = ConfigUpdate.load(parse_bytes(envelope.payload))
            current = self.blocks[update.channel_id]
            self.blocks[update.channel_id] = {
                "header": {"number": current["header"]["number"] + 1},
                "channel": update.channel_id,
                "config": update.apply(current["config"]),
            }

        return {"status": "SUCCESS"}


class FakeAdminClient:
    """Admin endpoint client replying with canned HTTP statuses per URL"""

    def __init__(self, replies=None, default=201):
        self.replies = dict(replies or {})
        self.default = default
        self.calls = []
        self.contexts = []

    def ssl_context(self, tls_ca_pem, identity):
        context = {"tls_ca": tls_ca_pem, "msp_id": identity.msp_id}
        self.contexts.append(context)
        return context

    async def join(self, url, block_bytes, ssl_context):
        self.calls.append(url)
        reply = self.replies.get(url, self.default)

        if isinstance(reply, Exception):
            raise reply

        if isinstance(reply, tuple):
            return reply

        if reply == 201:
            channel = parse_bytes(block_bytes).get("channel")
            body = (
                '{"name": "%s", "url": "/participation/v1/channels/%s", '
                '"consensusRelation": "consenter", "status": "active", "height": 1}'
                % (channel, channel)
            )
            return 201, body

        return reply, f"status {reply}"


class MemoryStatusSink:
    def __init__(self):
        self.reports = []

    def report(self, channel, result):
        self.reports.append((channel, result))


class MemoryConfigSink:
    def __init__(self):
        self.documents = {}

    def store(self, channel, document):
        self.documents[channel] = document


def channel_data(name, peer_orgs, orderer_orgs, **kwargs):
    """Builds the mapping form of a channel spec from test organizations"""
    data = {
        "name": name,
        "peer_organizations": [org.ref() for org in peer_orgs],
        "orderer_organizations": [
            org.ref(orderer_endpoints=[f"orderer0.{org.msp_id}:7050"]) for org in orderer_orgs
        ],
        "consenters": [
            {"host": f"orderer0.{org.msp_id}", "port": 7050, "tls_cert": org.tls_ca_pem}
            for org in orderer_orgs
        ],
    }
    data.update(kwargs)
    return data
