import asyncio

from berconudp import ConnectionDetails, ConnectionOptions, Packet, PacketType, Transport
from berconudp.dispatch import EventDispatcher
from berconudp.io import Connection
from berconudp.protocol import decode

expected_password = "foobar2000"
incorrect_password = "abc123"

fast_options = ConnectionOptions(
    login_timeout=0.2,
    command_attempts=3,
    command_interval=0.1,
    liveness_timeout=1.0,
    keep_alive_interval=None,
)


class FakeServer(asyncio.DatagramProtocol):
    """A scripted BattlEye server that records every packet it receives.

    :param password: The password accepted by the server.
    :param auto_login:
        If ``True``, LOGIN packets are answered immediately.
        Otherwise they are only recorded.

    """

    def __init__(self, password: str = expected_password, *, auto_login: bool = True):
        self.password = password
        self.auto_login = auto_login
        self.client_addr = None
        self.received: asyncio.Queue[Packet] = asyncio.Queue()
        self._transport: asyncio.DatagramTransport | None = None

    @property
    def address(self) -> tuple[str, int]:
        assert self._transport is not None
        return self._transport.get_extra_info("sockname")[:2]

    def details(self, password: str = expected_password) -> ConnectionDetails:
        return ConnectionDetails(*self.address, password)

    def connection_made(self, transport):
        self._transport = transport

    def datagram_received(self, data: bytes, addr):
        packet = decode(data, from_client=True)
        self.client_addr = addr

        if packet.type is PacketType.LOGIN and self.auto_login:
            self.send(Packet.server_login(packet.text == self.password))

        self.received.put_nowait(packet)

    def send(self, packet: Packet) -> None:
        self.send_raw(packet.to_bytes())

    def send_raw(self, data: bytes) -> None:
        assert self._transport is not None and self.client_addr is not None
        self._transport.sendto(data, self.client_addr)

    async def next_packet(self, ptype: PacketType, timeout: float = 1.0) -> Packet:
        """Waits for the next packet of a given type, skipping any others."""
        return await asyncio.wait_for(self._next_packet(ptype), timeout)

    async def _next_packet(self, ptype: PacketType) -> Packet:
        while True:
            packet = await self.received.get()
            if packet.type is ptype:
                return packet

    def drain(self, ptype: PacketType) -> list[Packet]:
        """Returns every packet of a given type received so far."""
        packets = []
        while not self.received.empty():
            packet = self.received.get_nowait()
            if packet.type is ptype:
                packets.append(packet)
        return packets

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()


async def start_server(**kwargs) -> FakeServer:
    loop = asyncio.get_running_loop()
    _, server = await loop.create_datagram_endpoint(
        lambda: FakeServer(**kwargs),
        local_addr=("127.0.0.1", 0),
    )
    return server


async def connect(
    transport: Transport,
    server: FakeServer,
    options: ConnectionOptions = fast_options,
) -> Connection:
    """Creates a connection to the server and waits for it to log in."""
    connection = transport.create_connection(server.details(), options, auto_connect=False)
    await connection.connect()
    return connection


def record(dispatch: EventDispatcher, event: str) -> list[tuple]:
    """Collects the arguments of every future dispatch of an event."""
    calls: list[tuple] = []
    dispatch.add_listener(event, lambda *args: calls.append(args))
    return calls


async def settle() -> None:
    """Lets scheduled listeners run."""
    for _ in range(5):
        await asyncio.sleep(0)
