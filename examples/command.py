"""Sends a command to an RCON server."""
import asyncio
import logging

import berconudp as rcon

IP_ADDR = "XXX.XXX.XXX.XXX"
PORT = 9999
PASSWORD = "ASCII_PASSWORD"

log = logging.getLogger("berconudp")
log.setLevel(logging.DEBUG)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s:%(levelname)s:%(name)s: %(message)s"))
log.addHandler(handler)


async def main():
    async with rcon.Transport() as transport:
        details = rcon.ConnectionDetails(IP_ADDR, PORT, PASSWORD)
        connection = transport.create_connection(details, auto_connect=False)
        await connection.connect()

        response = await connection.command("players")
        print(response)


if __name__ == "__main__":
    asyncio.run(main())
