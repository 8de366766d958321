import json
import asyncio
import logging
from enum import Enum
from datetime import datetime

import aiohttp

from concord.common.cfg import POLL_INTERVAL, POLL_DEADLINE
from concord.common.errors import ReconcileError, SubmissionRejectedError
from concord.design.channel import ChannelConfigBuilder
from concord.broker.differ import ConfigDiffer, NO_CHANGE, extract_config, reconciled_view
from concord.broker.signer import SignatureCollector
from concord.broker.joiner import OrdererJoinCoordinator
from concord.broker.poller import ConvergencePoller, fetch_block


logger = logging.getLogger(__name__)


SUCCESS_MESSAGE = "Channel setup completed"
CONFIG_DOCUMENT_KEY = "channel.json"


class Phase(Enum):
    JOINING = "joining"
    BUILDING = "building"
    DIFFING = "diffing"
    NO_CHANGE = "no_change"
    COLLECTING = "collecting"
    SUBMITTING = "submitting"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


class PassResult:
    """Outcome of one reconciliation pass of a channel"""

    def __init__(self, channel):
        self.channel = channel
        self.phase = None
        self.failed_phase = None
        self.message = ""
        self.error = None
        self.joins = []
        self.changed = False
        self.signers = []
        self.block_number = None
        self.start = datetime.now()
        self.stop = None

    @property
    def ok(self):
        return self.phase == Phase.DONE

    def dump(self):
        return {
            "channel": self.channel,
            "phase": self.phase.value if self.phase else None,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "message": self.message,
            "error": self.error,
            "joins": [j.dump() for j in self.joins],
            "changed": self.changed,
            "signers": list(self.signers),
            "block_number": self.block_number,
            "start": self.start.isoformat(),
            "stop": self.stop.isoformat() if self.stop else None,
        }


def required_signers(spec, target):
    """MSP ids of the organizations that must sign a channel config update

    Arguments:
        spec {ChannelSpec} -- The channel spec
        target {ChannelConfig} -- Target config built from spec

    Returns:
        list -- The admin peer organizations, or every peer organization of
        target if spec declares none
    """
    if spec.admin_peer_organizations:
        return list(spec.admin_peer_organizations)
    return target.organization_ids()


def converged(target):
    expected = reconciled_view(target.dump())

    def check(block):
        current = extract_config(block, target.name)
        return reconciled_view(current) == expected

    return check


class Operator:
    """Drives the reconciliation passes of channels

    Every collaborator is injected: ordering is the ordering service client,
    identities the identity store, status_sink and config_sink receive the
    pass results and converged configs, resolver looks up certificate
    authorities and join_client reaches the ordering node admin endpoints.
    """

    def __init__(
        self,
        ordering,
        identities,
        status_sink=None,
        config_sink=None,
        resolver=None,
        join_client=None,
        interval=POLL_INTERVAL,
        deadline=POLL_DEADLINE,
    ):
        self.ordering = ordering
        self.identities = identities
        self.status_sink = status_sink
        self.config_sink = config_sink
        self.builder = ChannelConfigBuilder(resolver)
        self.differ = ConfigDiffer()
        self.collector = SignatureCollector(identities)
        self.joiner = OrdererJoinCoordinator(identities, join_client)
        self.interval = interval
        self.deadline = deadline

    def transition(self, result, phase):
        logger.info(f"Channel {result.channel} phase {phase.value}")
        result.phase = phase

    def has_joins(self, spec):
        return any(
            ref.orderers_to_join or ref.external_orderers_to_join
            for ref in spec.orderer_organizations
        )

    async def join(self, spec, result):
        self.transition(result, Phase.JOINING)
        if not self.has_joins(spec):
            logger.info(f"Channel {spec.name} declares no orderers to join")
            return

        genesis = self.builder.build(spec)
        await self.joiner.join_all(spec, genesis, genesis.genesis_block(), result.joins)

    async def update(self, spec, result):
        self.transition(result, Phase.BUILDING)
        target = self.builder.build(spec)

        self.transition(result, Phase.DIFFING)
        current = await fetch_block(self.ordering, spec.name)
        logger.debug(f"Current config block of channel {spec.name}: {current}")
        update = self.differ.diff(current, target)

        if update is NO_CHANGE:
            self.transition(result, Phase.NO_CHANGE)
            logger.info(f"Channel {spec.name} config is up to date")
            return None

        self.transition(result, Phase.COLLECTING)
        envelope = self.collector.collect(update, required_signers(spec, target))
        result.signers = envelope.signers

        self.transition(result, Phase.SUBMITTING)
        try:
            reply = await self.ordering.submit(envelope)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise SubmissionRejectedError(
                f"config update of channel {spec.name} not delivered: {e!r}", detail=str(e)
            )
        logger.debug(f"Config update of channel {spec.name} submitted - reply {reply}")
        result.changed = True
        return converged(target)

    async def poll(self, spec, check, result):
        self.transition(result, Phase.POLLING)
        poller = ConvergencePoller(
            self.ordering,
            spec.name,
            interval=self.interval,
            deadline=self.deadline,
            check=check,
        )
        block = await poller.converge()
        result.block_number = block.get("header", {}).get("number")

        config = extract_config(block, spec.name)
        if self.config_sink:
            document = {CONFIG_DOCUMENT_KEY: json.dumps(config, indent=4, sort_keys=True)}
            self.config_sink.store(spec.name, document)

    def fail(self, result, phase, message, error):
        result.failed_phase = phase
        result.phase = Phase.FAILED
        result.message = message
        result.error = error
        logger.error(
            f"Channel {result.channel} reconciliation failed in phase "
            f"{phase.value if phase else None}: {message}"
        )

    def report(self, result):
        result.stop = datetime.now()
        if self.status_sink:
            self.status_sink.report(result.channel, result)

    async def reconcile(self, spec):
        """Runs one reconciliation pass of a channel

        Reconciliation errors are not raised: they turn into a failed result
        that keeps the phase where the pass stopped. Any other exception is
        recorded the same way and then propagates. Every pass, whatever its
        outcome, is given to the status sink.

        Arguments:
            spec {ChannelSpec} -- Declarative target of the channel

        Returns:
            PassResult -- The outcome of the pass, also given to the status sink
        """
        result = PassResult(spec.name)
        logger.info(f"Reconciling channel {spec.name}")

        try:
            await self.join(spec, result)
            check = await self.update(spec, result)
            await self.poll(spec, check, result)
        except ReconcileError as e:
            self.fail(result, result.phase, e.message, type(e).__name__)
        except Exception as e:
            self.fail(result, result.phase, repr(e), type(e).__name__)
            raise
        else:
            self.transition(result, Phase.DONE)
            result.message = SUCCESS_MESSAGE
            logger.info(f"Channel {spec.name}: {SUCCESS_MESSAGE}")
        finally:
            self.report(result)

        return result
