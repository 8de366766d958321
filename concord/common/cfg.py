import os
import logging
import argparse
import yaml

logger = logging.getLogger(__name__)


POLL_INTERVAL = 1.0
POLL_DEADLINE = 12.0

DEFAULTS = {
    "identities": "/tmp/concord/identities",
    "output": "/tmp/concord/output",
    "logs": "/tmp/concord/logs",
    "poll": {
        "interval": POLL_INTERVAL,
        "deadline": POLL_DEADLINE,
    },
}


class Config:
    def __init__(self):
        self._info = None
        self.cfg = {}
        self.parser = argparse.ArgumentParser(description="Concord App")

    def get(self):
        return self._info

    def load(self, filename):
        data = {}
        with open(filename, "r") as f:
            data = yaml.load(f, Loader=yaml.SafeLoader)
        return data or {}

    def parse(self, argv=None):
        self.parser.add_argument(
            "--uuid", type=str, help="Define the app unique id (default: None)"
        )

        self.parser.add_argument(
            "--cfg",
            type=str,
            help="Define the app config file (YAML) path (default: None)",
        )

        self.parser.add_argument(
            "--debug",
            action="store_true",
            help="Define the app logging mode (default: False)",
        )

        self.cfg, _ = self.parser.parse_known_args(argv)

        info = self.check()
        if info:
            self._info = info
            return True

        return False

    def cfg_args(self):
        cfgFile = self.cfg.cfg
        if cfgFile:
            cfg_data = self.load(cfgFile)
            return cfg_data
        return None

    def fill(self, data):
        """Completes the loaded config data with the default settings

        Arguments:
            data {dict} -- Contents of the config file

        Returns:
            dict -- Config data with every setting defined
        """
        info = dict(DEFAULTS)
        info.update({k: v for k, v in data.items() if v is not None})

        poll = dict(DEFAULTS["poll"])
        poll.update(data.get("poll") or {})
        info["poll"] = {
            "interval": float(poll.get("interval")),
            "deadline": float(poll.get("deadline")),
        }
        return info

    def check(self):
        _uuid, _cfg = self.cfg.uuid, self.cfg.cfg

        if _uuid and _cfg:

            if not os.path.isfile(_cfg):
                logger.info(f"App cfg file {_cfg} not found")
                return None

            try:
                data = self.cfg_args()
            except yaml.YAMLError as e:
                logger.info(f"App cfg file {_cfg} not parsed - exception {e}")
                return None

            if not data.get("channel"):
                logger.info(f"App cfg file {_cfg} does not define a channel")
                return None

            info = self.fill(data)
            info["uuid"] = _uuid
            info["debug"] = self.cfg.debug
            return info

        else:
            logger.info(
                "Init cfg NOT provided - both must exist: uuid and cfg (provided values: %s, %s)",
                _uuid,
                _cfg,
            )
            return None
