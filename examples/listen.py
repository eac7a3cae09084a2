"""Listens to several RCON servers for messages over a single socket."""

import asyncio
import logging
import math

import berconudp as rcon

SERVERS = [
    ("XXX.XXX.XXX.XXX", 9999, "ASCII_PASSWORD"),
    ("XXX.XXX.XXX.XXX", 9998, "ASCII_PASSWORD"),
]

log = logging.getLogger("berconudp")
log.setLevel(logging.DEBUG)
handler = logging.StreamHandler()
handler.setFormatter(
    logging.Formatter("%(asctime)s:%(levelname)s:%(name)s: %(message)s")
)
log.addHandler(handler)

transport = rcon.Transport()


@transport.dispatch.on_error
async def on_transport_error(exc: Exception):
    print("transport error:", repr(exc))


def add_server(ip: str, port: int, password: str):
    details = rcon.ConnectionDetails(ip, port, password)
    connection = transport.create_connection(details)

    @connection.dispatch.on_connected
    async def on_connected():
        print(f"{connection.id}: connected")

    @connection.dispatch.on_disconnected
    async def on_disconnected(reason: rcon.DisconnectReason):
        print(f"{connection.id}: disconnected ({reason.value})")

    @connection.dispatch.on_message
    async def on_message(message: str, packet: rcon.Packet):
        print(f"{connection.id}: {message}")

    @connection.dispatch.on_command
    async def on_command(response: str, resolved: bool, packet: rcon.Packet):
        print(f"{connection.id}: command response:", response or "<empty>")


async def main():
    for ip, port, password in SERVERS:
        add_server(ip, port, password)

    async with transport:
        await asyncio.sleep(math.inf)


if __name__ == "__main__":
    asyncio.run(main())
