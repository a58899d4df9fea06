"""Pairing and connection state machine for one Hue gateway.

The run loop re-evaluates the state from what is known (gateway address,
credential) and makes one attempt per cycle, sleeping a fixed delay between
cycles. Once connected it publishes every device, subscribes to commands and
starts polling, then watches the MQTT connection and the poll loop; when the
broker goes away or the gateway stops answering polls, the gateway side is
torn down and the cycle starts again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from phue2mqtt.config import HueConfig
from phue2mqtt.const import APP_NAME, HUE_UNAUTHORIZED_ERROR, LINK_START_TASK_NAME, RETRY_DELAY
from phue2mqtt.correlation import correlation_context
from phue2mqtt.exceptions import GatewayError, GatewayResponseError, LinkButtonNotPressedError
from phue2mqtt.link.command_routing import CommandRouter
from phue2mqtt.link.poll_loop import PollLoop
from phue2mqtt.link.translator import DeviceTranslator
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.properties import MANAGED_PROPERTIES, PropertyTable
from phue2mqtt.scheduler import TaskScheduler
from phue2mqtt.structs import (
    ConnectionState,
    DeviceType,
    GatewayClientProtocol,
    GatewaySessionProtocol,
    MessageBusProtocol,
    PairingCredential,
)

logger = get_logger(__name__)

CredentialCallback = Callable[[PairingCredential], Awaitable[None]]


class HueLink:
    """Start/stop control surface of the gateway link."""

    lp: str = "HueLink:"
    start_task: asyncio.Task[None] | None = None

    def __init__(
        self,
        config: HueConfig,
        client: GatewayClientProtocol,
        bus: MessageBusProtocol,
        prefix: str,
        on_credential: CredentialCallback | None = None,
        properties: PropertyTable = MANAGED_PROPERTIES,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self.client: GatewayClientProtocol = client
        self.bus: MessageBusProtocol = bus
        self.on_credential: CredentialCallback | None = on_credential
        self.retry_delay: float = retry_delay
        self.discover_enabled: bool = config.discover
        self.client_id: str = config.client_id
        self.gateway_address: str | None = config.gateway or None
        self.credential: PairingCredential | None = config.credential
        self.session: GatewaySessionProtocol | None = None
        self.state: ConnectionState = ConnectionState.UNPAIRED

        self.scheduler: TaskScheduler = TaskScheduler()
        self.translator: DeviceTranslator = DeviceTranslator(bus, prefix, properties)
        self.router: CommandRouter = CommandRouter(self.translator)
        self.poll_loop: PollLoop = PollLoop(
            self.scheduler,
            self.translator,
            config.polling_interval,
            on_gateway_lost=self.gateway_lost,
        )
        self._gateway_lost: asyncio.Event = asyncio.Event()
        self.start_task = None

    def evaluate_state(self) -> ConnectionState:
        """State implied by what is currently known about the gateway."""
        if not self.gateway_address:
            return ConnectionState.DISCOVERING
        if self.credential is None:
            return ConnectionState.AWAITING_BUTTON_PRESS
        return ConnectionState.PAIRED_DISCONNECTED

    async def step(self) -> ConnectionState:
        """Make one attempt from the current state and return the resulting state."""
        self.state = self.evaluate_state()
        with correlation_context():
            match self.state:
                case ConnectionState.DISCOVERING:
                    await self.discover()
                case ConnectionState.AWAITING_BUTTON_PRESS:
                    await self.pair()
                case ConnectionState.PAIRED_DISCONNECTED:
                    await self.connect()
        return self.state

    async def discover(self) -> bool:
        lp = f"{self.lp}discover:"
        if not self.discover_enabled:
            logger.error("%s no gateway address configured and discovery is disabled", lp)
            return False
        try:
            addresses = await self.client.discover()
        except GatewayError as e:
            logger.warning("%s discovery failed: %s", lp, e)
            return False
        if not addresses:
            logger.warning("%s gateway not found, retrying in %ss", lp, self.retry_delay)
            return False
        if len(addresses) > 1:
            logger.info("%s %d gateways found, using the first", lp, len(addresses), extra={"found": addresses})
        self.gateway_address = addresses[0]
        self.state = self.evaluate_state()
        logger.info("%s gateway found at %s", lp, self.gateway_address)
        return True

    async def pair(self) -> bool:
        lp = f"{self.lp}pair:"
        assert self.gateway_address is not None, "gateway address must be known before pairing"
        try:
            credential = await self.client.pair(self.gateway_address, APP_NAME, self.client_id)
        except LinkButtonNotPressedError:
            logger.warning("%s press the link button on the gateway at %s", lp, self.gateway_address)
            return False
        except GatewayError as e:
            logger.warning("%s pairing failed: %s", lp, e)
            return False

        self.credential = credential
        self.state = self.evaluate_state()
        logger.info("%s paired with %s", lp, credential.gateway_address, extra={"username": credential.username})
        if self.on_credential is not None:
            try:
                await self.on_credential(credential)
            except Exception:
                logger.exception("%s credential callback failed", lp)
        return True

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        assert self.gateway_address is not None, "gateway address must be known before connecting"
        assert self.credential is not None, "credential must be known before connecting"
        try:
            session = await self.client.connect(self.gateway_address, self.credential)
            # verification call, the session only counts once this succeeds
            _ = await session.enumerate(DeviceType.GROUPS)
        except GatewayResponseError as e:
            if e.error_type == HUE_UNAUTHORIZED_ERROR:
                logger.error("%s gateway rejected the stored username, pairing again", lp)
                self.credential = None
                self.state = self.evaluate_state()
            else:
                logger.warning("%s connection failed: %s", lp, e)
            return False
        except GatewayError as e:
            logger.warning("%s connection failed: %s", lp, e)
            return False
        self.session = session
        self.state = ConnectionState.CONNECTED
        logger.info("%s connected to gateway %s", lp, self.gateway_address)
        return True

    async def run(self) -> None:
        """Attempt, sleep, repeat; until cancelled."""
        lp = f"{self.lp}run:"
        while True:
            try:
                if await self.step() == ConnectionState.CONNECTED:
                    await self.run_connected()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s unexpected failure in state %s", lp, self.state)
                if self.session is not None:
                    await self.teardown()
            await asyncio.sleep(self.retry_delay)

    async def run_connected(self) -> None:
        """Post-connect sequence, then watch until the bus drops or the gateway is lost."""
        lp = f"{self.lp}connected:"
        session = self.session
        assert session is not None, "session must be set when connected"
        while not self.bus.is_connected():
            logger.info("%s waiting for the MQTT broker", lp)
            await asyncio.sleep(self.retry_delay)

        self.router.session = session
        self._gateway_lost.clear()
        with correlation_context():
            _ = await self.translator.publish_all_devices(session)
        await self.bus.subscribe(self.router.subscription, self.router.handle_message)
        self.poll_loop.start(session)

        while self.bus.is_connected() and not self._gateway_lost.is_set():
            await asyncio.sleep(self.retry_delay)
        if self._gateway_lost.is_set():
            logger.warning("%s gateway stopped answering, verifying the connection again", lp)
        else:
            logger.warning("%s MQTT connection lost, resetting the gateway link", lp)
        await self.teardown()

    async def gateway_lost(self) -> None:
        """Poll loop callback: end the connected phase on the next watch cycle."""
        self._gateway_lost.set()

    async def teardown(self) -> None:
        """Drop the gateway session and everything that depends on it."""
        await self.poll_loop.stop()
        self.router.session = None
        self.session = None
        await self.bus.unsubscribe(self.router.subscription)
        self.state = self.evaluate_state()

    async def publish_all_devices(self) -> int:
        """Re-run the full publish pass on demand."""
        lp = f"{self.lp}publish_all_devices:"
        if self.state != ConnectionState.CONNECTED or self.session is None:
            logger.warning("%s gateway not connected", lp)
            return 0
        with correlation_context():
            return await self.translator.publish_all_devices(self.session)

    async def start(self) -> None:
        self.translator.active = True
        self.start_task = self.scheduler.schedule_once(LINK_START_TASK_NAME, self.run)
        logger.info("%s started", self.lp, extra={"state": self.evaluate_state()})

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        self.translator.active = False
        await self.scheduler.cancel_all()
        if self.bus.is_connected() and self.translator.cache:
            logger.debug("%s marking %d devices disconnected", lp, len(self.translator.cache))
            await self.translator.mark_all_disconnected()
        await self.bus.unsubscribe(self.router.subscription)
        self.router.session = None
        self.poll_loop.session = None
        self.session = None
        await self.client.close()
        self.state = self.evaluate_state()
        logger.info("%s stopped", lp)
