import copy
import logging
import unittest

from concord.common.codec import parse_bytes
from concord.common.errors import DiffComputationError
from concord.design.channel import ChannelSpec, ChannelConfigBuilder
from concord.design.policies import READERS
from concord.broker.differ import (
    ConfigDiffer,
    ConfigUpdate,
    NO_CHANGE,
    NoChange,
    extract_config,
    reconciled_view,
)
from concord.tests.utils import FakeOrg, channel_data


class TestConfigDiffer(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.orgs = {msp_id: FakeOrg(msp_id) for msp_id in ["AMSP", "BMSP", "CMSP"]}
        cls.orderer = FakeOrg("OrdererMSP")

    def build(self, msp_ids, **kwargs):
        peer_orgs = [self.orgs[msp_id] for msp_id in msp_ids]
        data = channel_data("mychannel", peer_orgs, [self.orderer], **kwargs)
        return ChannelConfigBuilder().build(ChannelSpec.parse(data))

    def test_add_and_remove(self):
        current = self.build(["AMSP", "BMSP"]).genesis_block()
        target = self.build(["BMSP", "CMSP"])

        update = ConfigDiffer().diff(current, target)

        self.assertIsInstance(update, ConfigUpdate)
        self.assertEqual(update.channel_id, "mychannel")
        self.assertEqual(update.remove, ("AMSP",))
        self.assertEqual(update.added_ids(), ["CMSP"])
        self.assertIsNone(update.policies)
        self.assertIsNone(update.acls)

        updated = update.apply(current["config"])
        names = [org["Name"] for org in updated["Application"]["Organizations"]]
        self.assertEqual(names, ["BMSP", "CMSP"])

        kept = current["config"]["Application"]["Organizations"][1]
        self.assertEqual(updated["Application"]["Organizations"][0], kept)
        self.assertEqual(reconciled_view(updated), reconciled_view(target.dump()))

    def test_no_change(self):
        target = self.build(["AMSP", "BMSP"])
        current = target.genesis_block()

        result = ConfigDiffer().diff(current, target)
        self.assertIs(result, NO_CHANGE)
        self.assertIs(NoChange(), NO_CHANGE)
        self.assertFalse(result)

    def test_idempotence(self):
        current = self.build(["AMSP"]).genesis_block()
        target = self.build(["BMSP", "CMSP"], admin_peer_organizations=["BMSP"])

        update = ConfigDiffer().diff(current, target)
        applied = {
            "header": {"number": 1},
            "channel": "mychannel",
            "config": update.apply(current["config"]),
        }
        self.assertIs(ConfigDiffer().diff(applied, target), NO_CHANGE)

    def test_policies_and_acls_replaced(self):
        current = self.build(["AMSP", "BMSP"]).genesis_block()
        current["config"]["Application"]["ACLs"]["peer/Propose"] = READERS
        target = self.build(["AMSP", "BMSP"], admin_peer_organizations=["AMSP"])

        update = ConfigDiffer().diff(current, target)

        self.assertEqual(update.add, ())
        self.assertEqual(update.remove, ())
        self.assertEqual(
            update.policies["Admins"], {"Type": "Signature", "Rule": "OR('AMSP.admin')"}
        )
        self.assertEqual(update.acls, target.acls)

        updated = update.apply(current["config"])
        self.assertEqual(reconciled_view(updated), reconciled_view(target.dump()))

    def test_apply_leaves_current_untouched(self):
        current = self.build(["AMSP"]).genesis_block()
        original = copy.deepcopy(current)
        target = self.build(["BMSP"])

        ConfigDiffer().diff(current, target).apply(current["config"])
        self.assertEqual(current, original)

    def test_payload(self):
        current = self.build(["AMSP"]).genesis_block()
        target = self.build(["AMSP", "BMSP"])
        update = ConfigDiffer().diff(current, target)

        payload = update.payload()
        self.assertEqual(payload, update.payload())
        self.assertEqual(ConfigUpdate.load(parse_bytes(payload)), update)

    def test_malformed_blocks(self):
        target = self.build(["AMSP"])
        valid = target.genesis_block()

        malformed = [None, "block", {}, {"config": []}, {"config": {"Orderer": {}}}]

        block = copy.deepcopy(valid)
        block["config"]["Application"]["Organizations"] = {"AMSP": {}}
        malformed.append(block)

        block = copy.deepcopy(valid)
        block["config"]["Application"]["Organizations"] = [{"Name": "AMSP"}]
        malformed.append(block)

        block = copy.deepcopy(valid)
        block["config"]["Application"]["ACLs"] = ["peer/Propose"]
        malformed.append(block)

        block = copy.deepcopy(valid)
        block["channel"] = "otherchannel"
        malformed.append(block)

        for block in malformed:
            with self.assertRaises(DiffComputationError):
                ConfigDiffer().diff(block, target)

    def test_extract_config(self):
        block = self.build(["AMSP"]).genesis_block()
        self.assertEqual(extract_config(block, "mychannel"), block["config"])
        self.assertEqual(extract_config(block), block["config"])


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
