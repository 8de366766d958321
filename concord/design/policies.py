"""Policy and access control tables of an application channel.

Tables are read-only mappings; builders copy them into each channel
configuration they produce.
"""

from types import MappingProxyType


SIGNATURE = "Signature"
IMPLICIT_META = "ImplicitMeta"

READERS = "/Channel/Application/Readers"
WRITERS = "/Channel/Application/Writers"

MAJORITY_ADMINS = "MAJORITY Admins"


def policy(policy_type, rule):
    return {"Type": policy_type, "Rule": rule}


DEFAULT_ACLS = MappingProxyType(
    {
        # _lifecycle
        "_lifecycle/CheckCommitReadiness": WRITERS,
        "_lifecycle/CommitChaincodeDefinition": WRITERS,
        "_lifecycle/QueryChaincodeDefinition": WRITERS,
        "_lifecycle/QueryChaincodeDefinitions": WRITERS,
        # lscc
        "lscc/ChaincodeExists": READERS,
        "lscc/GetDeploymentSpec": READERS,
        "lscc/GetChaincodeData": READERS,
        "lscc/GetInstantiatedChaincodes": READERS,
        # qscc
        "qscc/GetChainInfo": READERS,
        "qscc/GetBlockByNumber": READERS,
        "qscc/GetBlockByHash": READERS,
        "qscc/GetTransactionByID": READERS,
        "qscc/GetBlockByTxID": READERS,
        # cscc
        "cscc/GetConfigBlock": READERS,
        "cscc/GetChannelConfig": READERS,
        # peer
        "peer/Propose": WRITERS,
        "peer/ChaincodeToChaincode": WRITERS,
        # events
        "event/Block": READERS,
        "event/FilteredBlock": READERS,
    }
)

CHANNEL_POLICIES = MappingProxyType(
    {
        "Readers": MappingProxyType(policy(IMPLICIT_META, "ANY Readers")),
        "Writers": MappingProxyType(policy(IMPLICIT_META, "ANY Writers")),
        "Admins": MappingProxyType(policy(IMPLICIT_META, MAJORITY_ADMINS)),
    }
)

ENDORSEMENT_POLICIES = MappingProxyType(
    {
        "Endorsement": MappingProxyType(
            policy(IMPLICIT_META, "MAJORITY Endorsement")
        ),
        "LifecycleEndorsement": MappingProxyType(
            policy(IMPLICIT_META, "MAJORITY Endorsement")
        ),
    }
)


def default_acls():
    return dict(DEFAULT_ACLS)


def thaw(table):
    return {name: dict(value) for name, value in table.items()}


def admin_policy(admin_msp_ids):
    """Builds the Admins policy of a channel section

    Arguments:
        admin_msp_ids {list} -- MSP ids of the administrative organizations

    Returns:
        dict -- A Signature policy OR-ing the admin role of every
        organization, or the implicit majority of admins when no
        organization is declared
    """
    if not admin_msp_ids:
        return policy(IMPLICIT_META, MAJORITY_ADMINS)

    roles = ",".join(f"'{msp_id}.admin'" for msp_id in admin_msp_ids)
    return policy(SIGNATURE, f"OR({roles})")


def application_policies(admin_msp_ids):
    policies = {
        "Readers": policy(IMPLICIT_META, "ANY Readers"),
        "Writers": policy(IMPLICIT_META, "ANY Writers"),
        "Admins": admin_policy(admin_msp_ids),
    }
    policies.update(thaw(ENDORSEMENT_POLICIES))
    return policies


def orderer_policies(admin_msp_ids):
    return {
        "Readers": policy(IMPLICIT_META, "ANY Readers"),
        "Writers": policy(IMPLICIT_META, "ANY Writers"),
        "Admins": admin_policy(admin_msp_ids),
        "BlockValidation": policy(IMPLICIT_META, "ANY Writers"),
    }


def channel_policies():
    return thaw(CHANNEL_POLICIES)


def organization_policies(msp_id):
    member = f"OR('{msp_id}.member')"
    return {
        "Admins": policy(SIGNATURE, f"OR('{msp_id}.admin')"),
        "Readers": policy(SIGNATURE, member),
        "Writers": policy(SIGNATURE, member),
        "Endorsement": policy(SIGNATURE, member),
    }
