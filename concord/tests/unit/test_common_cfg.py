import os
import logging
import tempfile
import unittest

import yaml

from concord.common.cfg import Config


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, data, name="concord.yaml"):
        filename = os.path.join(self.tmp.name, name)
        with open(filename, "w") as f:
            yaml.dump(data, f)
        return filename

    def test_parse(self):
        filename = self.write(
            {
                "channel": {"name": "mychannel"},
                "identities": "/var/concord/identities",
                "poll": {"deadline": 30},
            }
        )

        cfg = Config()
        self.assertTrue(cfg.parse(["--uuid", "1", "--cfg", filename, "--debug"]))

        info = cfg.get()
        self.assertEqual(info["uuid"], "1")
        self.assertTrue(info["debug"])
        self.assertEqual(info["channel"], {"name": "mychannel"})
        self.assertEqual(info["identities"], "/var/concord/identities")
        self.assertEqual(info["output"], "/tmp/concord/output")
        self.assertEqual(info["poll"], {"interval": 1.0, "deadline": 30.0})

    def test_missing_args(self):
        cfg = Config()
        self.assertFalse(cfg.parse(["--uuid", "1"]))
        self.assertIsNone(cfg.get())

    def test_missing_file(self):
        cfg = Config()
        filename = os.path.join(self.tmp.name, "missing.yaml")
        self.assertFalse(cfg.parse(["--uuid", "1", "--cfg", filename]))

    def test_missing_channel(self):
        filename = self.write({"output": "/tmp/out"})
        cfg = Config()
        self.assertFalse(cfg.parse(["--uuid", "1", "--cfg", filename]))

    def test_invalid_yaml(self):
        filename = os.path.join(self.tmp.name, "invalid.yaml")
        with open(filename, "w") as f:
            f.write("channel: [unclosed\n")

        cfg = Config()
        self.assertFalse(cfg.parse(["--uuid", "1", "--cfg", filename]))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
