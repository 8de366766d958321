import copy
import logging
from dataclasses import dataclass

from concord.common.codec import serialize_bytes
from concord.common.errors import DiffComputationError
from concord.design.orgs import OrganizationConfig


logger = logging.getLogger(__name__)


class NoChange:
    """Outcome of a diff between equivalent channel configurations"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = object.__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NO_CHANGE"

    def __bool__(self):
        return False


NO_CHANGE = NoChange()


def extract_config(block, channel=None):
    """Extracts the channel configuration carried by a config block

    Arguments:
        block {dict} -- Decoded config block fetched from the ordering service
        channel {str} -- Name of the channel the block must belong to

    Raises:
        DiffComputationError -- If the block does not carry a channel config
        with an application section

    Returns:
        dict -- The channel configuration
    """
    if not isinstance(block, dict):
        raise DiffComputationError(f"config block is a {type(block).__name__}, not a mapping")

    block_channel = block.get("channel")
    if channel and block_channel and block_channel != channel:
        raise DiffComputationError(
            f"config block belongs to channel {block_channel}, expected {channel}"
        )

    config = block.get("config")
    if not isinstance(config, dict):
        raise DiffComputationError("config block does not carry a channel config")

    application = config.get("Application")
    if not isinstance(application, dict):
        raise DiffComputationError("channel config has no application section")

    if not isinstance(application.get("Organizations", []), list):
        raise DiffComputationError("application organizations are not a list")

    for key in ["Policies", "ACLs"]:
        if not isinstance(application.get(key, {}), dict):
            raise DiffComputationError(f"application {key} are not a mapping")

    return config


def load_organizations(application):
    orgs = []
    for data in application.get("Organizations", []):
        try:
            orgs.append(OrganizationConfig.load(data))
        except (KeyError, TypeError, AttributeError) as e:
            raise DiffComputationError(f"malformed application organization {data!r}: {e!r}")
    return orgs


def reconciled_view(config):
    """Selects the sections of a channel config that updates reconcile

    Arguments:
        config {dict} -- A channel configuration

    Returns:
        dict -- The application organization ids, policies and ACLs
    """
    application = config.get("Application", {})
    return {
        "organizations": sorted(
            org.get("Name") for org in application.get("Organizations", [])
        ),
        "policies": application.get("Policies", {}),
        "acls": application.get("ACLs", {}),
    }


@dataclass(frozen=True)
class ConfigUpdate:
    """Delta between the current and target configuration of a channel"""

    channel_id: str
    add: tuple = ()
    remove: tuple = ()
    policies: dict = None
    acls: dict = None
    sequence: int = 0

    def is_empty(self):
        return not (self.add or self.remove) and self.policies is None and self.acls is None

    def added_ids(self):
        return [org.msp_id for org in self.add]

    def apply(self, config):
        """Applies this update to a channel configuration

        Arguments:
            config {dict} -- The channel configuration the update was computed from

        Returns:
            dict -- A new channel configuration with the update applied
        """
        updated = copy.deepcopy(config)
        application = updated.setdefault("Application", {})

        orgs = [
            org
            for org in application.get("Organizations", [])
            if org.get("Name") not in self.remove
        ]
        orgs.extend(org.dump() for org in self.add)
        application["Organizations"] = orgs

        if self.policies is not None:
            application["Policies"] = copy.deepcopy(self.policies)

        if self.acls is not None:
            application["ACLs"] = dict(self.acls)

        return updated

    def dump(self):
        return {
            "channel_id": self.channel_id,
            "sequence": self.sequence,
            "write_set": {
                "Application": {
                    "add": {org.msp_id: org.dump() for org in self.add},
                    "remove": list(self.remove),
                    "Policies": self.policies,
                    "ACLs": self.acls,
                }
            },
        }

    def payload(self):
        return serialize_bytes(self.dump())

    @classmethod
    def load(cls, data):
        application = data["write_set"]["Application"]
        return cls(
            channel_id=data["channel_id"],
            add=tuple(OrganizationConfig.load(org) for org in application["add"].values()),
            remove=tuple(application["remove"]),
            policies=application.get("Policies"),
            acls=application.get("ACLs"),
            sequence=data.get("sequence", 0),
        )


class ConfigDiffer:
    def diff(self, current_block, target):
        """Computes the update turning the current config into the target one

        Organizations are compared by MSP id only; policies and ACLs are
        replaced as a whole whenever they differ from the target.

        Arguments:
            current_block {dict} -- Config block fetched from the ordering service
            target {ChannelConfig} -- The target channel configuration

        Raises:
            DiffComputationError -- If the current config block is malformed

        Returns:
            ConfigUpdate|NoChange -- The update, or NO_CHANGE if there is nothing to update
        """
        current = extract_config(current_block, target.name)
        application = current["Application"]

        current_ids = [org.msp_id for org in load_organizations(application)]
        target_ids = target.organization_ids()

        logger.info("Current organizations %s", current_ids)
        logger.info("Target organizations %s", target_ids)

        remove = tuple(msp_id for msp_id in current_ids if msp_id not in target_ids)
        add = tuple(
            org for org in target.application_organizations if org.msp_id not in current_ids
        )

        policies = None
        if application.get("Policies", {}) != target.application_policies:
            policies = {k: dict(v) for k, v in target.application_policies.items()}

        acls = None
        if application.get("ACLs", {}) != target.acls:
            acls = dict(target.acls)

        sequence = current_block.get("header", {}).get("number", 0)
        update = ConfigUpdate(
            channel_id=target.name,
            add=add,
            remove=remove,
            policies=policies,
            acls=acls,
            sequence=sequence,
        )

        if update.is_empty():
            logger.info("No differences detected between current and target config")
            return NO_CHANGE

        for msp_id in remove:
            logger.info("Removing organization %s", msp_id)
        for msp_id in update.added_ids():
            logger.info("Adding organization %s", msp_id)
        if policies is not None:
            logger.info("Replacing application policies")
        if acls is not None:
            logger.info("Replacing application ACLs")

        return update
