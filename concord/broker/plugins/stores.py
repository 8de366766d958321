import os
import json
import logging

import yaml

from concord.broker.signer import SigningIdentity


logger = logging.getLogger(__name__)


class FileIdentityStore:
    """Admin identities stored as YAML files, one per MSP id

    Each file <directory>/<msp_id>.yaml holds the keys cert and key, both
    mappings with a pem entry.
    """

    def __init__(self, directory):
        self.directory = directory

    def filename(self, msp_id):
        return os.path.join(self.directory, f"{msp_id}.yaml")

    def get(self, msp_id):
        filename = self.filename(msp_id)
        if not os.path.isfile(filename):
            raise LookupError(f"identity file {filename} not found")

        with open(filename, "r") as f:
            data = yaml.load(f, Loader=yaml.SafeLoader) or {}

        cert = (data.get("cert") or {}).get("pem")
        key = (data.get("key") or {}).get("pem")
        if not cert or not key:
            raise LookupError(f"identity file {filename} lacks cert or key pem")

        logger.debug(f"Identity of {msp_id} loaded from {filename}")
        return SigningIdentity.from_pem(msp_id, cert, key)


class FileStatusSink:
    def __init__(self, directory):
        self.directory = directory

    def report(self, channel, result):
        os.makedirs(self.directory, exist_ok=True)
        filename = os.path.join(self.directory, f"{channel}-status.yaml")

        with open(filename, "w") as f:
            yaml.dump(result.dump(), f, default_flow_style=False)

        logger.info(f"Channel {channel} status written to {filename}")


class FileConfigSink:
    """Writes converged channel configs as <channel>-config documents"""

    def __init__(self, directory):
        self.directory = directory

    def store(self, channel, document):
        dirname = os.path.join(self.directory, f"{channel}-config")
        os.makedirs(dirname, exist_ok=True)

        for key, value in document.items():
            filename = os.path.join(dirname, key)
            with open(filename, "w") as f:
                if isinstance(value, str):
                    f.write(value)
                else:
                    json.dump(value, f, indent=4, sort_keys=True)

        logger.info(f"Channel {channel} config stored in {dirname}")


class StaticCertAuthResolver:
    """Certificate authorities defined in config, keyed by namespace/name

    mapping values are mappings with the keys sign_ca_cert and tls_ca_cert.
    """

    def __init__(self, mapping=None):
        self.mapping = dict(mapping or {})

    def resolve(self, name, namespace):
        key = f"{namespace}/{name}"
        if key not in self.mapping:
            raise LookupError(f"certificate authority {key} not defined")

        ca = self.mapping[key] or {}
        sign_ca_cert, tls_ca_cert = ca.get("sign_ca_cert"), ca.get("tls_ca_cert")
        if not sign_ca_cert or not tls_ca_cert:
            raise LookupError(f"certificate authority {key} lacks sign_ca_cert or tls_ca_cert")

        return sign_ca_cert, tls_ca_cert
