"""
Async client for the Kubo (go-ipfs) HTTP RPC API.

Only the handful of endpoints the shell needs are covered: node identity, swarm
peers, the pubsub family and shutdown. Every endpoint is a POST to
``/api/v0/<command>``. Topics and pubsub payloads travel multibase encoded
(base64url with the ``u`` prefix).
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pubsub_shell.errors import DecodeError, IpfsApiError

logger = logging.getLogger(__name__)


class NodeIdentity(BaseModel):
    """Response of ``/api/v0/id``"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="ID")
    addresses: List[str] = Field(default_factory=list, alias="Addresses")
    agent_version: Optional[str] = Field(default=None, alias="AgentVersion")


class SwarmPeer(BaseModel):
    """One entry of ``/api/v0/swarm/peers``"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    peer: str = Field(alias="Peer")
    addr: str = Field(alias="Addr")


class PubSubMessage(BaseModel):
    """A message received on a pubsub subscription stream"""
    sender: str
    topic: str
    data: bytes
    seqno: Optional[str] = None


def multibase_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url multibase (``u`` prefix)."""
    return "u" + base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def multibase_decode(value: str) -> bytes:
    """
    Decode a base64 family multibase string.

    Raises:
        DecodeError: If the prefix is unsupported or the body is malformed
    """
    if not value:
        raise DecodeError("empty multibase string")

    prefix, body = value[0], value[1:]
    padded = body + "=" * (-len(body) % 4)
    try:
        if prefix in ("u", "U"):
            return base64.urlsafe_b64decode(padded)
        if prefix in ("m", "M"):
            return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"malformed multibase payload: {e}") from e
    raise DecodeError(f"unsupported multibase prefix {prefix!r}")


def encode_topic(topic: str) -> str:
    return multibase_encode(topic.encode("utf-8"))


def decode_topic(value: str) -> str:
    try:
        return multibase_decode(value).decode("utf-8")
    except (DecodeError, UnicodeDecodeError):
        # Older daemons return topics verbatim
        return value


class IpfsApiClient:
    """Thin async wrapper around the node's RPC endpoints"""

    def __init__(self, api_url: str, request_timeout: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the RPC API, e.g. http://127.0.0.1:6123
            request_timeout: Timeout in seconds for non-streaming calls
            session: Optional pre-built session (the client will not own it)
        """
        self.api_url = api_url.rstrip("/")
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _url(self, endpoint: str) -> str:
        return f"{self.api_url}/api/v0/{endpoint}"

    async def _raise_for_status(self, endpoint: str, resp: aiohttp.ClientResponse) -> None:
        if resp.status == 200:
            return
        body = await resp.text()
        reason = body.strip() or resp.reason or "request failed"
        try:
            reason = json.loads(body).get("Message", reason)
        except (ValueError, AttributeError):
            pass
        raise IpfsApiError(endpoint, reason, status=resp.status)

    async def request(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                      data: Any = None) -> Any:
        """
        Call an endpoint and return its decoded JSON body.

        Raises:
            IpfsApiError: On HTTP errors, transport errors or timeouts
        """
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with self.session.post(self._url(endpoint), params=params,
                                         data=data, timeout=timeout) as resp:
                await self._raise_for_status(endpoint, resp)
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise IpfsApiError(endpoint, "request timed out") from e
        except aiohttp.ClientError as e:
            raise IpfsApiError(endpoint, str(e) or type(e).__name__) from e

        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise IpfsApiError(endpoint, f"invalid JSON response: {e}") from e

    async def id(self) -> NodeIdentity:
        result = await self.request("id")
        try:
            return NodeIdentity.model_validate(result)
        except ValidationError as e:
            raise IpfsApiError("id", f"unexpected response: {e}") from e

    async def swarm_peers(self) -> List[SwarmPeer]:
        result = await self.request("swarm/peers") or {}
        try:
            return [SwarmPeer.model_validate(p) for p in result.get("Peers") or []]
        except ValidationError as e:
            raise IpfsApiError("swarm/peers", f"unexpected response: {e}") from e

    async def pubsub_ls(self) -> List[str]:
        result = await self.request("pubsub/ls") or {}
        return [decode_topic(t) for t in result.get("Strings") or []]

    async def pubsub_peers(self, topic: str) -> List[str]:
        result = await self.request("pubsub/peers", params={"arg": encode_topic(topic)}) or {}
        return list(result.get("Strings") or [])

    async def pubsub_pub(self, topic: str, payload: bytes) -> None:
        form = aiohttp.FormData()
        form.add_field("data", payload, filename="data",
                       content_type="application/octet-stream")
        await self.request("pubsub/pub", params={"arg": encode_topic(topic)}, data=form)

    async def pubsub_sub(self, topic: str) -> aiohttp.ClientResponse:
        """
        Open a subscription stream.

        The daemon registers the subscription before it sends the response
        headers, so a returned response means the topic is live. The caller owns
        the response and must release it.
        """
        endpoint = "pubsub/sub"
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.request_timeout)
        try:
            resp = await self.session.post(self._url(endpoint),
                                           params={"arg": encode_topic(topic)},
                                           timeout=timeout)
        except aiohttp.ClientError as e:
            raise IpfsApiError(endpoint, str(e) or type(e).__name__) from e

        try:
            await self._raise_for_status(endpoint, resp)
        except IpfsApiError:
            resp.release()
            raise
        return resp

    async def iter_messages(self, topic: str,
                            resp: aiohttp.ClientResponse) -> AsyncIterator[PubSubMessage]:
        """
        Yield messages from an open subscription stream.

        Lines that cannot be decoded are logged and skipped.
        """
        async for raw in resp.content:
            line = raw.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                # Some daemons emit an empty object first
                if not entry:
                    continue
                yield PubSubMessage(
                    sender=entry.get("from", ""),
                    topic=topic,
                    data=multibase_decode(entry.get("data", "")),
                    seqno=entry.get("seqno"),
                )
            except (ValueError, DecodeError, ValidationError) as e:
                logger.warning(f"Failed to decode message on {topic}: {e}")

    async def shutdown(self) -> None:
        await self.request("shutdown")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
