import pytest

from snowlobby.protocol import (
    FIRE,
    KILL_LOG,
    LOGIN,
    MAX_BULLET_RANG,
    MAX_NAME_SIZE,
    MOVE,
    SERVER_LOGIN,
    SERVER_PORT,
    STATUS_CHANGE,
    UMB,
    ClientPacket,
    PacketAssembler,
    PacketLayout,
    ServerLinkPacket,
    ServerPacket,
    packet_type,
    split_packets,
)


def test_login_size_is_fixed_by_layout():
    data = LOGIN.pack(ClientPacket.LOGIN)
    assert len(data) == 48
    assert data[0] == 48


def test_kill_log_size_is_fixed_by_layout():
    data = KILL_LOG.pack(ServerPacket.KILL_LOG, attacker=1, victim=2, cause=3)
    assert len(data) == 14
    assert data[0] == 14


def test_pack_writes_size_and_type_header():
    data = LOGIN.pack(ClientPacket.LOGIN, id="bear", pw="honey", z=0.5)
    assert len(data) == LOGIN.size
    assert data[0] == LOGIN.size
    assert packet_type(data) == ClientPacket.LOGIN


def test_login_round_trip():
    data = LOGIN.pack(ClientPacket.LOGIN, id="bear", pw="honey", z=0.5)
    assert LOGIN.unpack(data) == {
        "size": LOGIN.size,
        "type": ClientPacket.LOGIN,
        "id": "bear",
        "pw": "honey",
        "z": 0.5,
    }


def test_move_round_trip():
    fields = dict(session_id=7, x=1.5, y=-2.25, z=3.0, vx=0.5, vy=0.25, vz=-1.0,
                  yaw=90.0, direction=45.0)
    decoded = MOVE.unpack(MOVE.pack(ServerPacket.MOVE, **fields))
    assert {name: decoded[name] for name in fields} == fields
    assert decoded["type"] == ServerPacket.MOVE


def test_missing_fields_default_to_zero():
    decoded = STATUS_CHANGE.unpack(STATUS_CHANGE.pack(ServerPacket.STATUS_CHANGE))
    assert decoded == {
        "size": STATUS_CHANGE.size,
        "type": ServerPacket.STATUS_CHANGE,
        "s_id": 0,
        "state": 0,
    }


def test_bool_field_round_trip():
    decoded = UMB.unpack(UMB.pack(ClientPacket.UMB, s_id=3, end=True))
    assert decoded["end"] is True
    assert decoded["s_id"] == 3


def test_array_field_round_trip():
    order = list(range(MAX_BULLET_RANG))[::-1]
    decoded = FIRE.unpack(FIRE.pack(ClientPacket.GUNFIRE, s_id=2, pitch=1.5, rand_int=order))
    assert decoded["rand_int"] == order
    assert decoded["pitch"] == 1.5


def test_array_field_with_wrong_length_is_rejected():
    with pytest.raises(ValueError):
        FIRE.pack(ClientPacket.GUNFIRE, rand_int=[1, 2])


def test_name_must_leave_room_for_terminator():
    with pytest.raises(ValueError):
        LOGIN.pack(ClientPacket.LOGIN, id="x" * MAX_NAME_SIZE)
    decoded = LOGIN.unpack(LOGIN.pack(ClientPacket.LOGIN, id="x" * (MAX_NAME_SIZE - 1)))
    assert decoded["id"] == "x" * (MAX_NAME_SIZE - 1)


def test_unknown_field_is_rejected():
    with pytest.raises(TypeError):
        LOGIN.pack(ClientPacket.LOGIN, colour=3)


def test_out_of_range_value_is_rejected():
    with pytest.raises(ValueError):
        SERVER_LOGIN.pack(ServerLinkPacket.SERVER_LOGIN, port_num=1 << 20)


def test_server_login_port_round_trip():
    data = SERVER_LOGIN.pack(ServerLinkPacket.SERVER_LOGIN, port_num=SERVER_PORT)
    assert SERVER_LOGIN.unpack(data)["port_num"] == SERVER_PORT


def test_unpack_short_data_fails():
    data = LOGIN.pack(ClientPacket.LOGIN)
    with pytest.raises(ValueError):
        LOGIN.unpack(data[:-1])


def test_packet_type_needs_two_bytes():
    with pytest.raises(ValueError):
        packet_type(b"\x01")


def test_bad_field_code_is_rejected():
    with pytest.raises(ValueError):
        PacketLayout("broken", (("value", "q"),))


def test_split_packets_keeps_remainder():
    first = LOGIN.pack(ClientPacket.LOGIN, id="a")
    second = KILL_LOG.pack(ServerPacket.KILL_LOG, attacker=1, victim=2, cause=3)
    partial = MOVE.pack(ServerPacket.MOVE)[:5]
    packets, rest = split_packets(first + second + partial)
    assert packets == [first, second]
    assert rest == partial


def test_split_packets_rejects_zero_size():
    with pytest.raises(ValueError):
        split_packets(b"\x00\x01")


def test_assembler_rebuilds_packets_from_single_bytes():
    originals = [
        LOGIN.pack(ClientPacket.LOGIN, id="bear", pw="honey"),
        UMB.pack(ClientPacket.UMB, s_id=4, end=False),
    ]
    stream = b"".join(originals)
    assembler = PacketAssembler()
    received = []
    for byte in stream:
        received.extend(assembler.feed(bytes([byte])))
    assert received == originals
    assert len(assembler) == 0


def test_assembler_holds_partial_packet():
    data = LOGIN.pack(ClientPacket.LOGIN)
    assembler = PacketAssembler()
    assert assembler.feed(data[:10]) == []
    assert len(assembler) == 10
    assert assembler.feed(data[10:]) == [data]