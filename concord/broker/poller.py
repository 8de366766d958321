import asyncio
import logging
from datetime import datetime

from concord.common.cfg import POLL_INTERVAL, POLL_DEADLINE
from concord.common.errors import (
    ReconcileError,
    BlockFetchError,
    ConvergenceTimeoutError,
)


logger = logging.getLogger(__name__)


FETCH_ATTEMPTS = 5
FETCH_DELAY = 1.5


async def fetch_block(ordering, channel, attempts=FETCH_ATTEMPTS, delay=FETCH_DELAY):
    """Fetches the current config block of a channel, retrying on failures

    Arguments:
        ordering {OrderingService} -- Client of the ordering service
        channel {str} -- The channel name
        attempts {int} -- Number of fetch attempts
        delay {float} -- Seconds between attempts

    Raises:
        BlockFetchError -- If every attempt failed

    Returns:
        dict -- The config block
    """
    error = None
    for attempt in range(1, attempts + 1):
        try:
            return await ordering.fetch_config_block(channel)
        except Exception as e:
            error = e
            logger.warning(
                f"Fetch of channel {channel} config block failed "
                f"(attempt {attempt}/{attempts}): {e!r}"
            )

        if attempt < attempts:
            await asyncio.sleep(delay)

    raise BlockFetchError(
        f"could not fetch config block of channel {channel} after {attempts} attempts: {error!r}",
        detail=str(error),
    )


class ConvergencePoller:
    """Polls the ordering service until it serves the expected channel config

    A single task fetches the config block every interval seconds and
    resolves a one-shot future the first time a block is fetched and
    satisfies check. Waiting is bounded by deadline; on expiry the task is
    flagged as abandoned and stops at its next iteration.
    """

    def __init__(self, ordering, channel, interval=POLL_INTERVAL, deadline=POLL_DEADLINE, check=None):
        self.ordering = ordering
        self.channel = channel
        self.interval = interval
        self.deadline = deadline
        self.check = check
        self.attempts = 0
        self._abandoned = False
        self._future = None
        self._task = None

    @property
    def abandoned(self):
        return self._abandoned

    def start(self):
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._task = loop.create_task(self._poll())
        logger.debug(f"Poller of channel {self.channel} started {self._task}")
        return self._task

    def _resolve(self, block=None, error=None):
        if self._future.done():
            return

        if error:
            self._future.set_exception(error)
        else:
            self._future.set_result(block)

    async def _poll(self):
        while not self._abandoned:
            self.attempts += 1

            try:
                block = await self.ordering.fetch_config_block(self.channel)
            except Exception as e:
                logger.debug(f"Poll {self.attempts} of channel {self.channel} failed: {e!r}")
            else:
                try:
                    satisfied = self.check(block) if self.check else True
                except ReconcileError as e:
                    self._resolve(error=e)
                    return

                if satisfied:
                    logger.info(
                        f"Channel {self.channel} config served after {self.attempts} polls"
                    )
                    self._resolve(block=block)
                    return

                logger.debug(f"Poll {self.attempts} of channel {self.channel} not converged yet")

            await asyncio.sleep(self.interval)

        logger.debug(f"Poller of channel {self.channel} abandoned")

    async def wait(self):
        """Waits for the poller to resolve, for at most deadline seconds

        Raises:
            ConvergenceTimeoutError -- If the deadline expired first
            ReconcileError -- If the fetched config failed the check

        Returns:
            dict -- The converged config block
        """
        start = datetime.now()
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), self.deadline)
        except asyncio.TimeoutError:
            self._abandoned = True
            elapsed = (datetime.now() - start).total_seconds()
            raise ConvergenceTimeoutError(
                f"channel {self.channel} config not served within {self.deadline}s "
                f"({self.attempts} polls, {elapsed:.2f}s elapsed)"
            )

    async def converge(self):
        self.start()
        return await self.wait()
