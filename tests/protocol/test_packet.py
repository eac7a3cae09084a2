import binascii

import pytest

from berconudp.errors import DecodeError
from berconudp.protocol import (
    MAX_PACKET_SIZE,
    Packet,
    PacketType,
    decode,
    encode,
)


def test_wire_layout():
    """Asserts the header, checksum and sub-header are laid out as BattlEye expects."""
    data = encode(PacketType.COMMAND, 4, b"players")
    body = b"\xff\x01\x04players"
    assert data == b"BE" + binascii.crc32(body).to_bytes(4, "little") + body

    data = encode(PacketType.COMMAND, 4, b"chunk", total=3, index=1)
    assert data[6:12] == b"\xff\x01\x04\x00\x03\x01"
    assert data[12:] == b"chunk"

    data = encode(PacketType.LOGIN, None, b"password")
    assert data[6:] == b"\xff\x00password"


@pytest.mark.parametrize(
    "packet,from_client",
    [
        (Packet.client_login("foobar2000"), True),
        (Packet.client_command(255, "say -1 Hello world!"), True),
        (Packet.client_message(12), True),
        (Packet.server_login(True), False),
        (Packet.server_login(False), False),
        (Packet.server_command(0, b""), False),
        (Packet.server_command(9, b"part two", total=2, index=1), False),
        (Packet.server_message(128, "Player #1 connected"), False),
    ],
)
def test_decode_recovers_encoded_packet(packet: Packet, from_client: bool):
    decoded = decode(packet.to_bytes(), from_client=from_client)
    assert decoded == packet
    assert decoded.valid
    assert decoded.checksum == packet.checksum


def test_checksum_detects_flipped_bits():
    """Asserts every single-bit corruption of the payload is detected."""
    data = Packet.server_message(3, "RCon admin #0 logged in").to_bytes()

    for i in range(9, len(data)):
        for bit in range(8):
            corrupted = bytearray(data)
            corrupted[i] ^= 1 << bit
            packet = decode(bytes(corrupted))
            assert not packet.valid


def test_corrupt_login_response_is_invalid_not_malformed():
    data = bytearray(Packet.server_login(True).to_bytes())
    data[8] = 2
    assert not decode(bytes(data)).valid


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"BE\x00\x00",
        b"XX\x00\x00\x00\x00\xff\x00\x01",
        b"BE\x00\x00\x00\x00\xfe\x00\x01",
        b"BE\x00\x00\x00\x00\xff\x07\x01",
        b"BE\x00\x00\x00\x00\xff\x01",
        b"BE\x00\x00\x00\x00\xff\x02",
    ],
)
def test_malformed_frames_raise(data: bytes):
    with pytest.raises(DecodeError):
        decode(data)


def _with_valid_checksum(body: bytes) -> bytes:
    return b"BE" + binascii.crc32(body).to_bytes(4, "little") + body


def test_impossible_content_raises():
    # Truncated multi-packet sub-header
    with pytest.raises(DecodeError):
        decode(_with_valid_checksum(b"\xff\x01\x00\x00\x02"))

    # Index equal to total
    with pytest.raises(DecodeError):
        decode(_with_valid_checksum(b"\xff\x01\x00\x00\x02\x02abc"))

    # Authentication byte must be 0 or 1
    with pytest.raises(DecodeError):
        decode(_with_valid_checksum(b"\xff\x00\x02"))

    with pytest.raises(DecodeError):
        decode(_with_valid_checksum(b"\xff\x00\x01\x01"))

    # Passwords cannot contain null bytes
    with pytest.raises(DecodeError):
        decode(_with_valid_checksum(b"\xff\x00pass\x00word"), from_client=True)


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        decode(b"BE")


def test_encode_validation():
    with pytest.raises(ValueError):
        encode(PacketType.LOGIN, 0, b"password")

    with pytest.raises(ValueError):
        encode(PacketType.COMMAND, None, b"players")

    with pytest.raises(ValueError):
        encode(PacketType.MESSAGE, 256)

    with pytest.raises(ValueError):
        encode(PacketType.COMMAND, 0, b"", total=0)

    with pytest.raises(ValueError):
        encode(PacketType.COMMAND, 0, b"", total=2, index=2)

    with pytest.raises(ValueError):
        encode(PacketType.MESSAGE, 0, b"", total=2, index=0)

    with pytest.raises(ValueError):
        encode(PacketType.COMMAND, 0, b"a" * MAX_PACKET_SIZE)


def test_unsequenced_command():
    packet = Packet.client_command(None, "players")
    assert packet.checksum is None
    with pytest.raises(ValueError):
        packet.to_bytes()

    sequenced = packet.with_sequence(42)
    assert sequenced.sequence == 42
    assert sequenced.checksum is not None
    assert decode(sequenced.to_bytes(), from_client=True) == sequenced


def test_packet_helpers():
    assert Packet.server_login(True).login_success is True
    assert Packet.server_login(False).login_success is False
    assert Packet.server_message(0, "Hello").login_success is None
    assert Packet.server_message(0, "Hello").text == "Hello"
    assert Packet(PacketType.MESSAGE, 0, b"\xff").text == "\ufffd"

    with pytest.raises(ValueError):
        Packet(PacketType.COMMAND, 300)
