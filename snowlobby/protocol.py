"""Wire protocol shared by the lobby server, battle servers and game clients.

Every packet starts with a one-byte total size and a one-byte type, followed
by little-endian fields with no padding between them.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import islice
from typing import Any, Iterator

SERVER_IP = "127.0.0.1"
SERVER_PORT = 10001

BUFSIZE = 2048
REZONE_HEIGHT = 2000
REZONE_WIDTH = 2000
MAX_NAME_SIZE = 21
MAX_CHAT_SIZE = 100
MAX_B_SERVER = 10
MAX_USER = 100
MAX_MATCH_USER = 8
MAX_NPC = 100
MAX_OBJ = 20
MAX_SNOWDRIFT = 1000
MAX_ITEM = 1000
MAX_BULLET_RANG = 8


class ClientPacket(IntEnum):
    """Packet types sent from a game client to the server."""

    LOGIN = 1
    MOVE = 2
    ATTACK = 3
    CHAT = 4
    TELEPORT = 5
    THROW_SNOW = 6
    DAMAGE = 7
    GET_ITEM = 8
    LOGOUT = 9
    STATUS_CHANGE = 10
    READY = 11
    STOP_SNOW_FARMING = 12
    MATCH = 13
    OPEN_BOX = 14
    GUNATTACK = 15
    GUNFIRE = 16
    UMB = 17
    ACCOUNT = 18
    CANCEL_SNOW = 19
    PLAYER_COUNT = 20
    PUT_OBJECT = 21
    NPC_MOVE = 22
    FREEZE = 23
    MATCHING = 24
    SERVER_LOGIN = 25


class ServerPacket(IntEnum):
    """Packet types sent from the server to a game client."""

    LOGIN_OK = 1
    MOVE = 2
    PUT_OBJECT = 3
    REMOVE_OBJECT = 4
    CHAT = 5
    LOGIN_FAIL = 6
    STATUS_CHANGE = 7
    DISCONNECT = 8
    HP = 9
    THROW_SNOW = 10
    ATTACK = 11
    GET_ITEM = 12
    READY = 13
    START = 14
    STOP_SNOW_FARMING = 15
    IS_BONE = 16
    LOGOUT = 17
    END = 18
    OPEN_BOX = 19
    GUNATTACK = 20
    GUNFIRE = 21
    TELEPORT = 22
    UMB = 23
    ACCOUNT = 24
    CANCEL_SNOW = 25
    PLAYER_COUNT = 26
    NPC_MOVE = 27
    KILL_LOG = 28
    FREEZE = 29


class ServerLinkPacket(IntEnum):
    """Packet types exchanged between the lobby and a battle server."""

    SERVER_LOGIN = 1
    SERVER_LOGIN_OK = 2
    SERVER_RESTART = 3
    SERVER_GAME_END = 4


class EventType(IntEnum):
    BONFIRE = 0
    BONFIRE_OUT = 1
    MATCH = 2
    END_MATCH = 3
    SUPPLY_DROP = 4


class Command(IntEnum):
    RECV = 0
    SEND = 1
    ACCEPT = 2
    NPC_MOVE = 3
    NPC_ATTACK = 4
    PLAYER_MOVE = 5
    PLAYER_ATTACK = 6
    PLAYER_RE = 7
    PLAYER_HEAL = 8
    PLAYER_DAMAGE = 9
    OBJ_SPAWN = 10
    SERVER_RECV = 11
    SERVER_SEND = 12


class ClientState(IntEnum):
    FREE = 0
    ACCEPT = 1
    INGAME = 2
    SERVER = 3


class ServerState(IntEnum):
    FREE = 0
    MATCHING = 1
    USING = 2


class PlayerState(IntEnum):
    SNOWMAN = 0
    INBURN = 1
    OUTBURN = 2
    ANIMAL = 3
    TORNADO = 4


class SnowAction(IntEnum):
    CREATE = 0
    DESTROY = 1


class AttackKind(IntEnum):
    HAND = 0
    GUN = 1


class HealKind(IntEnum):
    BONFIRE = 0
    MATCH = 1


class Level(IntEnum):
    LEVEL_1 = 0
    LEVEL_2 = 1
    LEVEL_3 = 2
    LEVEL_END = 3


class EquipType(IntEnum):
    SWORD = 0
    ARMOR = 1
    END = 2


class ItemState(IntEnum):
    EQUIP = 0
    UNEQUIP = 1
    END = 2


class Item(IntEnum):
    MATCH = 0
    UMBRELLA = 1
    BAG = 2
    SNOW = 3
    JETSKI = 4
    ICE = 5
    SUPPLY_BOX = 6


class ObjectType(IntEnum):
    PLAYER = 0
    ITEM_BOX = 1
    TORNADO = 2
    SUPPLY_BOX = 3


class LoginFailReason(IntEnum):
    OVERLAP_ID = 0
    WRONG_ID = 1
    WRONG_PW = 2
    OVERLAP_ACCOUNT = 3
    CREATE_ACCOUNT = 4


class BulletType(IntEnum):
    SNOWBALL = 0
    ICEBALL = 1
    SNOWBOMB = 2


class TeleportPoint(IntEnum):
    FIRE = 1
    BRIDGE = 2
    TOWER = 3
    ICE = 4


class CheatType(IntEnum):
    HP_UP = 1
    HP_DOWN = 2
    SNOW_PLUS = 3
    ICE_PLUS = 4


class CauseOfDeath(IntEnum):
    SNOWBALL = 0
    SNOWBALL_BOMB = 1
    COLD = 2
    SNOWMAN = 3


class KillLogType(IntEnum):
    NONE = 0
    ATTACKER = 1
    VICTIM = 2


class BodyPart(IntEnum):
    HEAD = 0
    LEFT_HAND = 1
    RIGHT_HAND = 2
    LEFT_LEG = 3
    RIGHT_LEG = 4
    CENTER = 5


_FIELD_CODE = re.compile(r"(\d*)([bBhHiIf?s])")
_HEADER = "<Bb"


def _parse_code(code: str) -> tuple[int, str]:
    match = _FIELD_CODE.fullmatch(code)
    if match is None:
        raise ValueError(f"unsupported field code {code!r}")
    return (int(match[1]) if match[1] else 1), match[2]


def _encode(name: str, code: str, value: Any) -> list[Any]:
    count, kind = _parse_code(code)
    if kind == "s":
        raw = b"" if value is None else value
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        if len(raw) >= count:
            raise ValueError(f"{name} must be shorter than {count} bytes")
        return [raw]
    if count > 1:
        items = [0] * count if value is None else list(value)
        if len(items) != count:
            raise ValueError(f"{name} needs exactly {count} values")
        return items
    if value is None:
        value = {"?": False, "f": 0.0}.get(kind, 0)
    return [value]


def _decode(code: str, raw: Iterator[Any]) -> Any:
    count, kind = _parse_code(code)
    if kind == "s":
        return next(raw).split(b"\0", 1)[0].decode("utf-8", errors="replace")
    if count > 1:
        return list(islice(raw, count))
    value = next(raw)
    return bool(value) if kind == "?" else value


@dataclass(frozen=True)
class PacketLayout:
    """The fixed binary layout of one packet kind."""

    name: str
    fields: tuple[tuple[str, str], ...] = ()
    _struct: struct.Struct = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        codes = "".join(code for _, code in self.fields)
        for _, code in self.fields:
            _parse_code(code)
        compiled = struct.Struct(_HEADER + codes)
        if compiled.size > 0xFF:
            raise ValueError(f"{self.name} does not fit a one-byte size")
        object.__setattr__(self, "_struct", compiled)

    @property
    def size(self) -> int:
        return self._struct.size

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    def pack(self, packet_type: int, **kwargs: Any) -> bytes:
        """Encode a packet; fields not given are zero."""
        unknown = set(kwargs) - set(self.field_names)
        if unknown:
            raise TypeError(f"{self.name} has no fields {sorted(unknown)}")
        values: list[Any] = [self.size, int(packet_type)]
        for name, code in self.fields:
            values.extend(_encode(name, code, kwargs.get(name)))
        try:
            return self._struct.pack(*values)
        except struct.error as exc:
            raise ValueError(f"cannot encode {self.name}: {exc}") from exc

    def unpack(self, data: bytes) -> dict[str, Any]:
        """Decode the leading packet of ``data`` into a dict of fields."""
        if len(data) < self.size:
            raise ValueError(f"{self.name} needs {self.size} bytes, got {len(data)}")
        raw = iter(self._struct.unpack_from(data))
        result: dict[str, Any] = {"size": next(raw), "type": next(raw)}
        for name, code in self.fields:
            result[name] = _decode(code, raw)
        return result


def _layout(name: str, *fields: tuple[str, str]) -> PacketLayout:
    return PacketLayout(name, tuple(fields))


_NAME = f"{MAX_NAME_SIZE}s"
_MOVE_FIELDS = (
    ("session_id", "i"),
    ("x", "f"), ("y", "f"), ("z", "f"),
    ("vx", "f"), ("vy", "f"), ("vz", "f"),
    ("yaw", "f"),
    ("direction", "f"),
)

LOGIN = _layout("login", ("id", _NAME), ("pw", _NAME), ("z", "f"))
LOGIN_OK = _layout(
    "login_ok",
    ("s_id", "i"), ("color", "i"),
    ("x", "f"), ("y", "f"), ("z", "f"), ("yaw", "f"),
    ("id", _NAME), ("pw", _NAME),
)
LOGOUT = _layout("logout", ("s_id", "i"))
MOVE = _layout("move", *_MOVE_FIELDS)
NPC_MOVE = _layout("npc_move", *_MOVE_FIELDS)
PUT_OBJECT = _layout(
    "put_object",
    ("s_id", "i"), ("obj_id", "i"),
    ("x", "f"), ("y", "f"), ("z", "f"), ("yaw", "f"),
    ("object_type", "b"), ("name", _NAME),
)
SC_GET_ITEM = _layout(
    "sc_get_item", ("s_id", "i"), ("item_type", "i"), ("destroy_obj_id", "i")
)
THROW_SNOW = _layout(
    "throw_snow",
    ("s_id", "i"), ("bullet", "i"),
    ("ball_x", "f"), ("ball_y", "f"), ("ball_z", "f"),
    ("yaw", "f"), ("pitch", "f"), ("roll", "f"),
    ("speed", "f"),
)
CANCEL_SNOW = _layout("cancel_snow", ("s_id", "i"), ("bullet", "i"))
FIRE = _layout(
    "fire", ("s_id", "i"), ("pitch", "f"), ("rand_int", f"{MAX_BULLET_RANG}i")
)
DAMAGE = _layout("damage", ("attacker", "i"), ("bullet", "i"))
HP_CHANGE = _layout("hp_change", ("s_id", "i"), ("hp", "i"))
READY_REQUEST = _layout("ready_request")
READY = _layout("ready", ("s_id", "i"))
START = _layout("start")
ATTACK = _layout("attack", ("s_id", "i"), ("bullet", "i"))
GET_ITEM = _layout(
    "get_item",
    ("s_id", "i"), ("item_type", "i"), ("current_bullet", "i"), ("destroy_obj_id", "i"),
)
OPEN_BOX = _layout("open_box", ("open_obj_id", "i"))
CHEAT = _layout("cheat", ("s_id", "i"), ("cheat_type", "i"))
TELEPORT = _layout("teleport", ("point", "i"))
MATCH = _layout("match")
UMB = _layout("umb", ("s_id", "i"), ("end", "?"))
IS_BONE = _layout("is_bone")
GAME_END = _layout("game_end", ("s_id", "i"))
REMOVE_OBJECT = _layout("remove_object", ("s_id", "i"))
CHAT = _layout("chat", ("id", "i"), ("message", f"{MAX_CHAT_SIZE}s"))
LOGIN_FAIL = _layout("login_fail", ("reason", "i"))
STATUS_CHANGE = _layout("status_change", ("s_id", "i"), ("state", "i"))
PLAYER_COUNT = _layout("player_count", ("snowman", "i"), ("bear", "i"))
KILL_LOG = _layout("kill_log", ("attacker", "i"), ("victim", "i"), ("cause", "i"))
FREEZE = _layout("freeze", ("s_id", "i"), ("body_part", "i"))
SERVER_LOGIN = _layout("server_login", ("port_num", "h"))
SERVER_LOGIN_OK = _layout("server_login_ok", ("server_id", "i"))
SERVER_GAME_END = _layout("server_game_end", ("win_id", "i"))


def packet_type(data: bytes) -> int:
    """Return the type byte of a packet."""
    if len(data) < 2:
        raise ValueError("a packet has at least a size and a type byte")
    return data[1]


def split_packets(buffer: bytes) -> tuple[list[bytes], bytes]:
    """Cut complete packets off the front of ``buffer``.

    Returns the complete packets and the bytes of an unfinished one.
    """
    data = bytes(buffer)
    packets: list[bytes] = []
    offset = 0
    while offset < len(data):
        size = data[offset]
        if size == 0:
            raise ValueError(f"zero-length packet at offset {offset}")
        if size > len(data) - offset:
            break
        packets.append(data[offset:offset + size])
        offset += size
    return packets, data[offset:]


class PacketAssembler:
    """Reassembles packets from a stream that arrives in arbitrary pieces."""

    def __init__(self) -> None:
        self._pending = bytearray()

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, data: bytes) -> list[bytes]:
        """Add received bytes and return every packet now complete."""
        self._pending.extend(data)
        packets, rest = split_packets(self._pending)
        self._pending = bytearray(rest)
        return packets