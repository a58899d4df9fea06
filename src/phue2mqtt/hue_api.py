"""Hue gateway client over the local v1 REST API.

Implements the gateway side of the link: discovery (meethue N-UPnP endpoint),
pairing (link button handshake), and an authenticated session for device
enumeration and light/group commands. One aiohttp ClientSession is shared by
the client and every HueSession it opens.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, cast

import aiohttp
from pydantic import ValidationError

from phue2mqtt.const import HUE_API_TIMEOUT, HUE_DISCOVERY_URL, HUE_LINK_BUTTON_ERROR
from phue2mqtt.exceptions import (
    GatewayConnectionError,
    GatewayResponseError,
    LinkButtonNotPressedError,
    PairingError,
)
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.payloads import DevicePayload, parse_device_payload
from phue2mqtt.structs import DeviceType, PairingCredential, Scalar

logger = get_logger(__name__)

# devicetype is "<application>#<device>", max 20 and 19 chars
_APP_NAME_MAX = 20
_DEVICE_NAME_MAX = 19


def _first_error(data: object) -> Mapping[str, Any] | None:
    """Return the first ``{"error": {...}}`` body of a gateway response, if any."""
    if isinstance(data, list):
        for item in cast("list[object]", data):
            if isinstance(item, dict) and isinstance(item.get("error"), dict):
                return cast("Mapping[str, Any]", item["error"])
    return None


def _raise_for_gateway_error(data: object) -> None:
    error = _first_error(data)
    if error is not None:
        raise GatewayResponseError(
            int(error.get("type", 0)),
            str(error.get("description", "")),
            str(error.get("address", "")),
        )


class _HttpMixin:
    lp: str = "HueAPI:"
    api_timeout: int = HUE_API_TIMEOUT

    async def _get_http(self) -> aiohttp.ClientSession:
        raise NotImplementedError

    async def _request(self, method: str, url: str, address: str, body: object | None = None) -> object:
        http = await self._get_http()
        logger.debug("%s %s %s", self.lp, method, url, extra={"body": body} if body is not None else None)
        try:
            async with http.request(
                method,
                url,
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.api_timeout),
            ) as resp:
                resp.raise_for_status()
                return cast("object", await resp.json(content_type=None))
        except aiohttp.ClientResponseError as e:
            raise GatewayConnectionError(f"HTTP {e.status} {e.message}", address) from e
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise GatewayConnectionError(str(e) or type(e).__name__, address) from e


class HueSession(_HttpMixin):
    """Authenticated session bound to one gateway and username."""

    lp: str = "HueSession:"

    def __init__(self, client: HueClient, address: str, credential: PairingCredential) -> None:
        self._client: HueClient = client
        self.address: str = address
        self.credential: PairingCredential = credential
        self.api_timeout = client.api_timeout
        self.base_url: str = f"http://{address}/api/{credential.username}"

    async def _get_http(self) -> aiohttp.ClientSession:
        return await self._client._get_http()  # noqa: SLF001

    async def get_config(self) -> Mapping[str, Any]:
        data = await self._request("GET", f"{self.base_url}/config", self.address)
        _raise_for_gateway_error(data)
        if not isinstance(data, dict):
            raise GatewayResponseError(0, "unexpected config response", "/config")
        return cast("Mapping[str, Any]", data)

    async def enumerate(self, device_type: DeviceType) -> Sequence[DevicePayload]:
        """List every device of one type, in gateway order.

        Bodies that do not match the expected shape are skipped with a warning.
        """
        lp = f"{self.lp}enumerate:"
        data = await self._request("GET", f"{self.base_url}/{device_type}", self.address)
        _raise_for_gateway_error(data)
        if not isinstance(data, dict):
            raise GatewayResponseError(0, f"unexpected {device_type} response", f"/{device_type}")

        devices: list[DevicePayload] = []
        for gateway_id, body in cast("dict[str, object]", data).items():
            if not isinstance(body, dict):
                logger.warning("%s skipping non-object %s body", lp, device_type, extra={"id": gateway_id})
                continue
            try:
                devices.append(parse_device_payload(device_type, gateway_id, cast("dict[str, Any]", body)))
            except ValidationError as e:
                logger.warning(
                    "%s skipping malformed %s payload",
                    lp,
                    device_type,
                    extra={"id": gateway_id, "error": e.errors(include_url=False)},
                )
        return devices

    async def _put_state(self, path: str, state: dict[str, Scalar]) -> None:
        data = await self._request("PUT", f"{self.base_url}{path}", self.address, state)
        _raise_for_gateway_error(data)

    async def set_light_state(self, light_id: str, state: dict[str, Scalar]) -> None:
        await self._put_state(f"/lights/{light_id}/state", state)

    async def set_group_state(self, group_id: str, state: dict[str, Scalar]) -> None:
        await self._put_state(f"/groups/{group_id}/action", state)


class HueClient(_HttpMixin):
    """Discovery, pairing and session factory for Hue gateways."""

    lp: str = "HueClient:"
    http_session: aiohttp.ClientSession | None = None

    def __init__(self, api_timeout: int = HUE_API_TIMEOUT, discovery_url: str = HUE_DISCOVERY_URL) -> None:
        self.api_timeout = api_timeout
        self.discovery_url: str = discovery_url
        self.http_session = None

    async def _get_http(self) -> aiohttp.ClientSession:
        if self.http_session is None or self.http_session.closed:
            logger.debug("%s creating aiohttp ClientSession", self.lp)
            self.http_session = aiohttp.ClientSession()
        return self.http_session

    async def close(self) -> None:
        if self.http_session is not None and not self.http_session.closed:
            logger.debug("%s closing aiohttp ClientSession", self.lp)
            await self.http_session.close()
        self.http_session = None

    async def discover(self) -> list[str]:
        """Return the internal IP address of every gateway the discovery portal knows."""
        data = await self._request("GET", self.discovery_url, "")
        if not isinstance(data, list):
            return []
        addresses: list[str] = []
        for entry in cast("list[object]", data):
            if isinstance(entry, dict) and entry.get("internalipaddress"):
                addresses.append(str(entry["internalipaddress"]))
        return addresses

    async def pair(self, address: str, app_name: str, client_id: str) -> PairingCredential:
        """Ask the gateway for a new username.

        Raises:
            LinkButtonNotPressedError: the link button has not been pressed
            PairingError: any other gateway rejection
            GatewayConnectionError: gateway unreachable

        """
        body = {
            "devicetype": f"{app_name[:_APP_NAME_MAX]}#{client_id[:_DEVICE_NAME_MAX]}",
            "generateclientkey": True,
        }
        data = await self._request("POST", f"http://{address}/api", address, body)
        error = _first_error(data)
        if error is not None:
            error_type = int(error.get("type", 0))
            description = str(error.get("description", ""))
            if error_type == HUE_LINK_BUTTON_ERROR:
                raise LinkButtonNotPressedError(error_type, description, address)
            raise PairingError(error_type, description, address)

        success: Mapping[str, Any] | None = None
        if isinstance(data, list):
            for item in cast("list[object]", data):
                if isinstance(item, dict) and isinstance(item.get("success"), dict):
                    success = cast("Mapping[str, Any]", item["success"])
                    break
        if not success or not success.get("username"):
            raise PairingError(0, "pairing response carried no username", address)
        return PairingCredential(
            gateway_address=address,
            username=str(success["username"]),
            client_key=str(success.get("clientkey", "")),
            client_id=client_id,
        )

    async def connect(self, address: str, credential: PairingCredential) -> HueSession:
        """Open a session and check the gateway answers for this username."""
        session = HueSession(self, address, credential)
        config = await session.get_config()
        logger.debug(
            "%s gateway answered",
            self.lp,
            extra={"address": address, "bridge_id": config.get("bridgeid", "?")},
        )
        return session
