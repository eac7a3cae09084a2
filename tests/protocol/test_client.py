import pytest

from berconudp.errors import InvalidPacket
from berconudp.protocol import (
    AlreadyConnected,
    AlreadyConnecting,
    ClientAuthEvent,
    ClientCommandEvent,
    ClientMessageEvent,
    ClientState,
    InvalidStateError,
    NotConnected,
    Packet,
    PacketType,
    RCONClientProtocol,
    SequenceExhausted,
    decode,
)

from . import expected_password, first_and_only_event, first_and_only_packet, login


def test_invalid_states(client: RCONClientProtocol):
    """Asserts the client raises :py:exc:`InvalidStateError` where appropriate."""
    for _ in range(2):
        message = Packet.server_message(0, "Hello world!")
        command_response = Packet.server_command(0, b"Hello world!")

        # Before authentication
        with pytest.raises(InvalidStateError):
            client.receive_datagram(message.to_bytes())
        with pytest.raises(InvalidStateError):
            client.receive_datagram(command_response.to_bytes())
        with pytest.raises(InvalidStateError):
            client.receive_datagram(Packet.server_login(True).to_bytes())
        with pytest.raises(NotConnected):
            client.send_command("too early")
        assert not client.events_received()

        packet = client.authenticate(expected_password)
        assert packet.type is PacketType.LOGIN
        assert packet.payload == expected_password.encode()
        assert client.state is ClientState.LOGGING_IN

        with pytest.raises(AlreadyConnecting):
            client.authenticate(expected_password)

        client.receive_datagram(Packet.server_login(True).to_bytes())
        assert first_and_only_event(client, ClientAuthEvent).success
        assert client.state is ClientState.CONNECTED

        # After authentication
        with pytest.raises(AlreadyConnected):
            client.authenticate(expected_password)

        client.receive_datagram(message.to_bytes())
        assert first_and_only_event(client, ClientMessageEvent)
        assert first_and_only_packet(client) == Packet.client_message(0)

        packet = client.send_command("Hello world!")
        assert packet.sequence == command_response.sequence
        client.receive_datagram(command_response.to_bytes())
        assert first_and_only_event(client, ClientCommandEvent)

        client.reset()
        assert client.state is ClientState.DISCONNECTED


def test_auth_failure(client: RCONClientProtocol):
    login(client, success=False)
    assert client.state is ClientState.DISCONNECTED

    # A new login attempt is allowed afterwards
    login(client)
    assert client.state is ClientState.CONNECTED


def test_invalid_checksum_rejected(client: RCONClientProtocol):
    login(client)

    data = bytearray(Packet.server_message(0, "Hello world!").to_bytes())
    data[-1] ^= 0xFF
    with pytest.raises(InvalidPacket):
        client.receive_datagram(bytes(data))
    assert not client.events_received()
    assert not client.packets_to_send()


def test_sequence_allocation(client: RCONClientProtocol):
    """Asserts sequences wrap around and are never handed out twice while pending."""
    login(client)

    sequences = [client.send_command(str(i)).sequence for i in range(256)]
    assert sequences == list(range(256))

    with pytest.raises(SequenceExhausted):
        client.send_command("one too many")

    # Freeing one sequence makes it available again
    client.receive_datagram(Packet.server_command(17, b"done").to_bytes())
    assert first_and_only_event(client, ClientCommandEvent).sequence == 17
    assert client.send_command("reused").sequence == 17

    with pytest.raises(SequenceExhausted):
        client.allocate_sequence()

    client.invalidate_command(200)
    assert not client.is_pending(200)
    assert client.allocate_sequence() == 200


def test_sequence_skips_pending(client: RCONClientProtocol):
    login(client)

    first = client.send_command("slow").sequence
    for i in range(1, 256):
        seq = client.send_command(str(i)).sequence
        client.receive_datagram(Packet.server_command(seq, b"").to_bytes())
        client.events_received()

    # Wrapped around, but the slow command still owns the first sequence
    assert client.send_command("next").sequence == first + 1
    assert client.is_pending(first)


def test_command_reassembly(client: RCONClientProtocol):
    login(client)

    # Unknown command responses are ignored
    client.receive_datagram(Packet.server_command(99, b"stray").to_bytes())
    assert not client.events_received()

    seq = client.send_command("players").sequence
    assert seq is not None

    def fragment(index: int, response: bytes, total: int = 3) -> bytes:
        return Packet.server_command(seq, response, total=total, index=index).to_bytes()

    # Out of order delivery
    client.receive_datagram(fragment(2, b"world!"))
    client.receive_datagram(fragment(0, b"Hello"))

    # Repeated index and mismatched total are ignored
    client.receive_datagram(fragment(0, b"Goodbye"))
    client.receive_datagram(fragment(1, b"???", total=4))
    assert not client.events_received()
    assert client.is_pending(seq)

    client.receive_datagram(fragment(1, b", "))
    event = first_and_only_event(client, ClientCommandEvent)
    assert event.sequence == seq
    assert event.message == "Hello, world!"
    assert not client.is_pending(seq)

    # Late duplicates after completion are ignored
    client.receive_datagram(fragment(1, b", "))
    assert not client.events_received()


def test_message_acknowledged_once_dispatched_once(client: RCONClientProtocol):
    """Asserts repeated messages are acknowledged every time but only produce one event."""
    login(client)

    data = Packet.server_message(5, "Player #3 connected").to_bytes()

    client.receive_datagram(data)
    event = first_and_only_event(client, ClientMessageEvent)
    assert event.sequence == 5
    assert event.message == "Player #3 connected"
    assert first_and_only_packet(client) == Packet.client_message(5)

    client.receive_datagram(data)
    assert not client.events_received()
    ack = first_and_only_packet(client)
    assert decode(ack.to_bytes(), from_client=True) == Packet.client_message(5)


def test_reset_discards_pending(client: RCONClientProtocol):
    login(client)
    seq = client.send_command("players").sequence
    assert seq is not None

    client.reset()
    assert not client.is_pending(seq)
    assert "disconnected" in repr(client)

    login(client)
    client.receive_datagram(Packet.server_command(seq, b"stale").to_bytes())
    assert not client.events_received()
