from typing import Type, TypeVar

from berconudp.protocol import ClientAuthEvent, Packet, RCONClientProtocol

expected_password = "foobar2000"
incorrect_password = "abc123"

T = TypeVar("T")


def login(client: RCONClientProtocol, *, success: bool = True) -> None:
    """Walks the client through the login handshake."""
    client.authenticate(expected_password if success else incorrect_password)
    client.receive_datagram(Packet.server_login(success).to_bytes())
    assert first_and_only_event(client, ClientAuthEvent).success is success


def first_and_only_event(client: RCONClientProtocol, event_cls: Type[T]) -> T:
    events = client.events_received()
    assert len(events) == 1
    first_event = events[0]
    assert isinstance(first_event, event_cls)
    return first_event


def first_and_only_packet(client: RCONClientProtocol) -> Packet:
    packets = client.packets_to_send()
    assert len(packets) == 1
    return packets[0]
