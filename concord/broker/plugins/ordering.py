import logging


logger = logging.getLogger(__name__)


class OrderingService:
    """Client of the ordering service of a network

    Implementations own the wire encoding of blocks and envelopes: blocks
    are handed over decoded, as mappings with keys header, channel and
    config; envelopes as SignedEnvelope objects.
    """

    async def fetch_config_block(self, channel):
        """Fetches the latest config block of channel

        Returns:
            dict -- The decoded config block
        """
        raise NotImplementedError

    async def submit(self, envelope):
        """Broadcasts a signed config update envelope

        Raises:
            SubmissionRejectedError -- If the ordering service rejected the envelope

        Returns:
            dict -- The broadcast reply
        """
        raise NotImplementedError
