import pytest

from berconudp.protocol import RCONClientProtocol


@pytest.fixture
def client() -> RCONClientProtocol:
    return RCONClientProtocol()
