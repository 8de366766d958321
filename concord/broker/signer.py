import os
import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from concord.common.codec import serialize_bytes, parse_bytes, b64encode
from concord.common.errors import CertificateParseError, InsufficientSignaturesError
from concord.design.orgs import parse_certificate


logger = logging.getLogger(__name__)


NONCE_SIZE = 24

CURVE_ORDERS = {
    "secp256r1": 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551,
    "secp384r1": 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFC7634D81F4372DDF581A0DB248B0A77AECEC196ACCC52973,
}


def low_s(signature, curve):
    """Normalizes an ECDSA signature so that s is at most half the curve order"""
    order = CURVE_ORDERS.get(curve.name)
    if order is None:
        return signature

    r, s = decode_dss_signature(signature)
    if s > order // 2:
        s = order - s
    return encode_dss_signature(r, s)


@dataclass(frozen=True)
class SigningIdentity:
    """Admin identity of one organization: MSP id, certificate and private key"""

    msp_id: str
    cert: str
    key: object

    @classmethod
    def from_pem(cls, msp_id, cert_pem, key_pem):
        """Loads an identity from its PEM encoded certificate and key

        Raises:
            CertificateParseError -- If the certificate is not well-formed
            ValueError -- If the key is not an EC key or does not match the certificate
        """
        cert = parse_certificate(cert_pem, f"{msp_id} admin certificate")

        data = key_pem.encode("utf-8") if isinstance(key_pem, str) else key_pem
        key = serialization.load_pem_private_key(data, password=None)

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError(f"{msp_id} admin key is not an EC key")

        public = key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        expected = cert.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        if public != expected:
            raise ValueError(f"{msp_id} admin key does not match its certificate")

        cert_text = cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
        return cls(msp_id=msp_id, cert=cert_text, key=key)

    def key_pem(self):
        return self.key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("utf-8")

    def sign(self, message):
        signature = self.key.sign(message, ec.ECDSA(hashes.SHA256()))
        return low_s(signature, self.key.curve)


@dataclass(frozen=True)
class ConfigSignature:
    msp_id: str
    signature_header: bytes
    signature: bytes

    def creator(self):
        return parse_bytes(self.signature_header).get("creator", {})

    def dump(self):
        return {
            "msp_id": self.msp_id,
            "signature_header": b64encode(self.signature_header),
            "signature": b64encode(self.signature),
        }


@dataclass(frozen=True)
class SignedEnvelope:
    """Config update payload carrying the signatures of admin organizations"""

    channel_id: str
    payload: bytes
    signatures: tuple = ()

    @property
    def signers(self):
        return [s.msp_id for s in self.signatures]

    def dump(self):
        return {
            "channel_id": self.channel_id,
            "config_update": b64encode(self.payload),
            "signatures": [s.dump() for s in self.signatures],
        }


def signature_header(identity):
    header = {
        "creator": {"mspid": identity.msp_id, "id_bytes": identity.cert},
        "nonce": b64encode(os.urandom(NONCE_SIZE)),
    }
    return serialize_bytes(header)


def check_signature(signature, payload):
    """Checks a config signature against the update payload

    Returns:
        bool -- True if the signature was made over header and payload by
        the certificate in the header, which belongs to the signature MSP id
    """
    creator = signature.creator()
    if creator.get("mspid") != signature.msp_id:
        return False

    try:
        cert = parse_certificate(creator.get("id_bytes", ""), f"{signature.msp_id} creator")
    except CertificateParseError:
        return False

    public_key = cert.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False

    try:
        public_key.verify(
            signature.signature,
            signature.signature_header + payload,
            ec.ECDSA(hashes.SHA256()),
        )
    except InvalidSignature:
        return False

    return True


def verify_envelope(envelope, required):
    """Verifies that an envelope carries a valid signature of every required org

    Arguments:
        envelope {SignedEnvelope} -- The signed config update
        required {list} -- MSP ids of the organizations that must sign

    Raises:
        InsufficientSignaturesError -- Listing the organizations without a
        valid signature
    """
    valid = set()
    for signature in envelope.signatures:
        if check_signature(signature, envelope.payload):
            valid.add(signature.msp_id)
        else:
            logger.warning("Invalid signature of %s", signature.msp_id)

    missing = [msp_id for msp_id in required if msp_id not in valid]
    if missing:
        raise InsufficientSignaturesError(
            f"config update lacks valid signatures of {missing}", missing
        )


class SignatureCollector:
    """Signs config updates on behalf of the administrative organizations

    identities is the identity store, exposing get(msp_id) that returns the
    SigningIdentity of an organization or raises LookupError.
    """

    def __init__(self, identities):
        self.identities = identities

    def sign(self, msp_id, payload):
        try:
            identity = self.identities.get(msp_id)
        except LookupError as e:
            raise InsufficientSignaturesError(
                f"no signing identity for organization {msp_id}: {e}", [msp_id]
            )
        except ValueError as e:
            raise InsufficientSignaturesError(
                f"invalid signing identity for organization {msp_id}: {e}", [msp_id]
            )

        if identity.msp_id != msp_id:
            raise InsufficientSignaturesError(
                f"signing identity of {identity.msp_id} returned for organization {msp_id}",
                [msp_id],
            )

        header = signature_header(identity)
        signature = identity.sign(header + payload)
        logger.info("Config update signed by %s", msp_id)
        return ConfigSignature(msp_id=msp_id, signature_header=header, signature=signature)

    def collect(self, update, required):
        """Collects the signature of every required organization on an update

        Arguments:
            update {ConfigUpdate} -- The update to be signed
            required {list} -- MSP ids of the organizations that must sign

        Raises:
            InsufficientSignaturesError -- If any required organization could not sign

        Returns:
            SignedEnvelope -- The payload of the update and its signatures
        """
        if not required:
            raise InsufficientSignaturesError("no organization is required to sign the update")

        payload = update.payload()
        logger.debug("Config update payload size %s bytes", len(payload))

        signatures = []
        for msp_id in dict.fromkeys(required):
            signatures.append(self.sign(msp_id, payload))

        envelope = SignedEnvelope(
            channel_id=update.channel_id,
            payload=payload,
            signatures=tuple(signatures),
        )
        verify_envelope(envelope, required)
        return envelope
