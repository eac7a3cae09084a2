import pytest_asyncio

from berconudp import Transport

from . import start_server


@pytest_asyncio.fixture
async def server():
    server = await start_server()
    yield server
    server.close()


@pytest_asyncio.fixture
async def transport():
    async with Transport(host="127.0.0.1") as transport:
        yield transport
