import os
import ssl
import json
import asyncio
import logging
import tempfile
from enum import Enum
from dataclasses import dataclass, field

import aiohttp

from concord.common.codec import serialize_bytes
from concord.common.errors import JoinProtocolError, OrganizationResolutionError


logger = logging.getLogger(__name__)


JOIN_PATH = "/participation/v1/channels"
JOIN_FIELD = "config-block"
JOIN_TIMEOUT = 30

HTTP_CREATED = 201
HTTP_METHOD_NOT_ALLOWED = 405


class JoinStatus(Enum):
    JOINED = "joined"
    ALREADY_JOINED = "already_joined"
    FAILED = "failed"


@dataclass(frozen=True)
class JoinResult:
    url: str
    status: JoinStatus
    http_status: int = 0
    detail: str = ""
    channel_info: dict = field(default_factory=dict)

    def dump(self):
        return {
            "url": self.url,
            "status": self.status.value,
            "http_status": self.http_status,
            "detail": self.detail,
            "channel_info": dict(self.channel_info),
        }


class AdminClient:
    """Client of the channel participation API of ordering nodes"""

    def __init__(self, timeout=JOIN_TIMEOUT):
        self.timeout = timeout

    def ssl_context(self, tls_ca_pem, identity):
        """Builds the mutual TLS context used to reach an ordering node

        ssl.SSLContext.load_cert_chain only reads the client certificate and
        key from files, so both are written to a private temporary directory
        that is removed as soon as the context holds them.

        Arguments:
            tls_ca_pem {str} -- TLS root certificate of the orderer organization
            identity {SigningIdentity} -- Admin identity presented as TLS client

        Returns:
            ssl.SSLContext -- The client TLS context
        """
        context = ssl.create_default_context(cadata=tls_ca_pem)

        with tempfile.TemporaryDirectory() as tmp:
            cert_file = os.path.join(tmp, "cert.pem")
            key_file = os.path.join(tmp, "key.pem")

            with open(cert_file, "w") as f:
                f.write(identity.cert)
            with open(key_file, "w") as f:
                f.write(identity.key_pem())

            context.load_cert_chain(cert_file, key_file)

        return context

    async def join(self, url, block_bytes, ssl_context):
        """Posts a config block to an ordering node admin endpoint

        Returns:
            tuple -- The HTTP status and body of the reply
        """
        data = aiohttp.FormData()
        data.add_field(
            JOIN_FIELD,
            block_bytes,
            filename="config.block",
            content_type="application/octet-stream",
        )

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, data=data, ssl=ssl_context) as resp:
                body = await resp.text()
                logger.debug(f"Join sent to {url} - status {resp.status} - response {body}")
                return resp.status, body


class OrdererJoinCoordinator:
    """Joins the ordering nodes of a channel spec to its channel

    identities is the identity store, client an AdminClient (or any object
    with the same ssl_context and join methods).
    """

    def __init__(self, identities, client=None):
        self.identities = identities
        self.client = client if client else AdminClient()

    async def join_node(self, node, block_bytes, ssl_context):
        url = node.url + JOIN_PATH
        logger.info(f"Joining orderer {node.label} at {url}")

        try:
            status, body = await self.client.join(url, block_bytes, ssl_context)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise JoinProtocolError(
                f"orderer {url} join request failed: {e!r}", url=url, body=str(e)
            )

        if status == HTTP_METHOD_NOT_ALLOWED:
            logger.info(f"Orderer {url} already joined the channel")
            return JoinResult(
                url=url,
                status=JoinStatus.ALREADY_JOINED,
                http_status=status,
                detail=body,
            )

        if status != HTTP_CREATED:
            raise JoinProtocolError(
                f"orderer {url} refused to join the channel - status {status}: {body}",
                url=url,
                status=status,
                body=body,
            )

        try:
            info = json.loads(body)
        except ValueError as e:
            raise JoinProtocolError(
                f"orderer {url} replied with invalid channel info: {e}",
                url=url,
                status=status,
                body=body,
            )

        logger.info(
            f"Orderer {url} joined channel {info.get('name')} "
            f"- relation {info.get('consensusRelation')} status {info.get('status')}"
        )
        return JoinResult(
            url=url,
            status=JoinStatus.JOINED,
            http_status=status,
            detail=body,
            channel_info=info,
        )

    def tls_root(self, config, msp_id):
        for org in config.orderer_organizations:
            if org.msp_id == msp_id and org.tls_root_certs:
                return org.tls_root_certs[0]

        raise OrganizationResolutionError(
            f"orderer organization {msp_id} has no TLS root certificate in channel {config.name}"
        )

    def identity(self, msp_id):
        try:
            return self.identities.get(msp_id)
        except (LookupError, ValueError) as e:
            raise OrganizationResolutionError(
                f"no admin identity for orderer organization {msp_id}: {e}"
            )

    async def join_all(self, spec, config, block, results=None):
        """Joins every ordering node declared in spec to the channel

        External nodes of each orderer organization are joined before its
        cluster managed nodes. The first failure aborts the join, remaining
        nodes are not attempted.

        Arguments:
            spec {ChannelSpec} -- Spec declaring the nodes to join
            config {ChannelConfig} -- Target config holding the orderer TLS roots
            block {dict} -- Genesis block of the channel
            results {list} -- Collects the JoinResult of every node attempted,
            including the FAILED one that aborts the join

        Raises:
            JoinProtocolError -- If a node refused to join
            OrganizationResolutionError -- If an organization lacks an identity
            or TLS root certificate

        Returns:
            list -- The JoinResult of every node
        """
        block_bytes = serialize_bytes(block)
        results = results if results is not None else []

        for ref in spec.orderer_organizations:
            nodes = list(ref.external_orderers_to_join) + list(ref.orderers_to_join)
            if not nodes:
                continue

            tls_ca_pem = self.tls_root(config, ref.msp_id)
            identity = self.identity(ref.msp_id)
            ssl_context = self.client.ssl_context(tls_ca_pem, identity)

            for node in nodes:
                try:
                    result = await self.join_node(node, block_bytes, ssl_context)
                except JoinProtocolError as e:
                    results.append(
                        JoinResult(
                            url=e.url,
                            status=JoinStatus.FAILED,
                            http_status=e.status or 0,
                            detail=e.body or e.message,
                        )
                    )
                    raise
                results.append(result)

        logger.info(f"Orderers joined: {len(results)} nodes")
        return results
