import os
import json
import asyncio
import logging
import tempfile
import unittest

import yaml

from concord.broker.operator import PassResult, Phase
from concord.broker.plugins.ordering import OrderingService
from concord.broker.plugins.stores import (
    FileIdentityStore,
    FileStatusSink,
    FileConfigSink,
    StaticCertAuthResolver,
)
from concord.tests.utils import FakeOrg


class TestStores(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def test_identity_store(self):
        org = FakeOrg("Org1MSP")
        with open(os.path.join(self.tmp.name, "Org1MSP.yaml"), "w") as f:
            yaml.dump(org.identity_yaml(), f)

        store = FileIdentityStore(self.tmp.name)
        identity = store.get("Org1MSP")
        self.assertEqual(identity.msp_id, "Org1MSP")
        self.assertEqual(identity.cert, org.admin_cert_pem)

        with self.assertRaises(LookupError):
            store.get("Org2MSP")

    def test_identity_store_incomplete(self):
        with open(os.path.join(self.tmp.name, "Org1MSP.yaml"), "w") as f:
            yaml.dump({"cert": {"pem": "x"}}, f)

        with self.assertRaises(LookupError):
            FileIdentityStore(self.tmp.name).get("Org1MSP")

    def test_status_sink(self):
        result = PassResult("mychannel")
        result.phase = Phase.DONE
        result.message = "Channel setup completed"

        FileStatusSink(self.tmp.name).report("mychannel", result)

        with open(os.path.join(self.tmp.name, "mychannel-status.yaml")) as f:
            status = yaml.load(f, Loader=yaml.SafeLoader)

        self.assertEqual(status["phase"], "done")
        self.assertEqual(status["message"], "Channel setup completed")

    def test_config_sink(self):
        config = {"Application": {"Organizations": []}}
        document = {"channel.json": json.dumps(config)}

        FileConfigSink(self.tmp.name).store("mychannel", document)

        filename = os.path.join(self.tmp.name, "mychannel-config", "channel.json")
        with open(filename) as f:
            self.assertEqual(json.load(f), config)

    def test_cert_auth_resolver(self):
        resolver = StaticCertAuthResolver(
            {"fabric/org1-ca": {"sign_ca_cert": "sign", "tls_ca_cert": "tls"}}
        )
        self.assertEqual(resolver.resolve("org1-ca", "fabric"), ("sign", "tls"))

        with self.assertRaises(LookupError):
            resolver.resolve("org2-ca", "fabric")

        with self.assertRaises(LookupError):
            StaticCertAuthResolver({"fabric/org1-ca": {}}).resolve("org1-ca", "fabric")

    def test_ordering_service_interface(self):
        ordering = OrderingService()

        with self.assertRaises(NotImplementedError):
            asyncio.run(ordering.fetch_config_block("mychannel"))

        with self.assertRaises(NotImplementedError):
            asyncio.run(ordering.submit(None))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
