import os
import logging
import asyncio

from concord.common.logs import Logs
from concord.common.cfg import Config
from concord.design.channel import ChannelSpec
from concord.broker.operator import Operator
from concord.broker.plugins.stores import (
    FileIdentityStore,
    FileStatusSink,
    FileConfigSink,
    StaticCertAuthResolver,
)

logger = logging.getLogger(__name__)


class App:
    """Runs one reconciliation pass of the channel defined in a config file

    ordering is the ordering service client (an OrderingService) the pass
    talks to.
    """

    def __init__(self, ordering):
        self.ordering = ordering
        self.cfg = Config()

    def logs(self, screen=True):
        prefix = self.__class__.__name__
        info = self.cfg.get()
        filename = os.path.join(
            info.get("logs"), prefix.lower() + "-" + str(info.get("uuid")) + ".log"
        )
        Logs(filename, debug=info.get("debug"), screen=screen)

    def operator(self, info):
        poll = info.get("poll")
        return Operator(
            self.ordering,
            FileIdentityStore(info.get("identities")),
            status_sink=FileStatusSink(info.get("output")),
            config_sink=FileConfigSink(info.get("output")),
            resolver=StaticCertAuthResolver(info.get("certificate_authorities")),
            interval=poll.get("interval"),
            deadline=poll.get("deadline"),
        )

    async def main(self, info):
        spec = ChannelSpec.parse(info.get("channel"))
        operator = self.operator(info)
        result = await operator.reconcile(spec)
        logger.info(f"Channel {spec.name} pass result: {result.phase.value} - {result.message}")
        return result

    def init(self, argv=None):
        if not self.cfg.parse(argv):
            logger.info("App config not valid - exiting")
            return None

        self.logs()
        info = self.cfg.get()

        try:
            return asyncio.run(self.main(info))
        finally:
            logger.info("App shutdown complete")
