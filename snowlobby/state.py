"""Shared lobby state: player slots, battle-server slots, map pickups and packet senders."""

from __future__ import annotations

import itertools
import threading
from typing import Iterator

from snowlobby.client import Client
from snowlobby.protocol import (
    CHAT,
    GAME_END,
    HP_CHANGE,
    IS_BONE,
    KILL_LOG,
    LOGIN_FAIL,
    LOGIN_OK,
    MAX_B_SERVER,
    MAX_ITEM,
    MAX_NPC,
    MAX_SNOWDRIFT,
    MAX_USER,
    MOVE,
    PLAYER_COUNT,
    PUT_OBJECT,
    REMOVE_OBJECT,
    STATUS_CHANGE,
    ClientState,
    PacketAssembler,
    ServerPacket,
    ServerState,
)
from snowlobby.queues import TimerQueue

MAX_THREADS = 10
RANGE = 10000
BONFIRE_RANGE = 1700
TORNADO_ID = 100
GM_ID = 1000


class ServerFullError(RuntimeError):
    """Raised when every player slot is taken."""


def is_player(s_id: int) -> bool:
    """True for ids that belong to player slots rather than NPCs."""
    return 0 <= s_id < MAX_USER


class BattleServerSlot:
    """The lobby's view of one battle server."""

    def __init__(self, s_id: int = -1) -> None:
        self.s_id = s_id
        self.match_users = 0
        self.port_num = -1
        self.link: Client | None = None
        self.assembler = PacketAssembler()
        self._state = ServerState.FREE
        self._lock = threading.Lock()

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    def transition(self, state: ServerState) -> bool:
        """Move to ``state``; False when already there."""
        with self._lock:
            if self._state == state:
                return False
            self._state = ServerState(state)
            return True


class GameState:
    """Everything the lobby shares between its worker threads."""

    def __init__(self) -> None:
        self._snow_lock = threading.Lock()
        self._item_lock = threading.Lock()
        self._spitem_lock = threading.Lock()
        self._color_lock = threading.Lock()
        self.timer_queue = TimerQueue()
        self.reset()

    def reset(self) -> None:
        """Put every slot, pickup and flag back to the start of a game."""
        self.clients = [Client(i) for i in range(MAX_USER + MAX_NPC)]
        self.battle_servers = [BattleServerSlot(i) for i in range(MAX_B_SERVER)]
        self.snow_drift = [True] * MAX_SNOWDRIFT
        self.ice_drift = [True] * MAX_SNOWDRIFT
        self.items = [True] * MAX_ITEM
        self.special_items = [True] * MAX_ITEM
        self.start_game = False
        self.tornado = False
        with self._color_lock:
            self._colors = itertools.count()
        self.timer_queue.clear()

    def next_color(self) -> int:
        """Hand out the next player colour."""
        with self._color_lock:
            return next(self._colors)

    def in_game(self) -> Iterator[Client]:
        """Yield every client that is currently in the game."""
        return (c for c in self.clients if c.cl_state == ClientState.INGAME)

    def allocate_id(self) -> int:
        """Claim the first free player slot and return its id."""
        for client in self.clients[:MAX_USER]:
            with client.state_lock:
                if client.cl_state == ClientState.FREE:
                    client.cl_state = ClientState.ACCEPT
                    return client.s_id
        raise ServerFullError("Maximum Number of Clients Overflow")

    def is_bonfire(self, s_id: int) -> bool:
        client = self.clients[s_id]
        return abs(client.x) <= BONFIRE_RANGE and abs(client.y) <= BONFIRE_RANGE

    def is_near(self, a: int, b: int) -> bool:
        first, second = self.clients[a], self.clients[b]
        return abs(first.x - second.x) <= RANGE and abs(first.y - second.y) <= RANGE

    @staticmethod
    def _take(flags: list[bool], lock: threading.Lock, obj_id: int) -> bool:
        if not 0 <= obj_id < len(flags):
            raise IndexError(f"object id {obj_id} out of range")
        with lock:
            if flags[obj_id]:
                flags[obj_id] = False
                return True
            return False

    def take_snowdrift(self, obj_id: int) -> bool:
        """Claim a snow drift; True only for the first taker."""
        return self._take(self.snow_drift, self._snow_lock, obj_id)

    def take_icedrift(self, obj_id: int) -> bool:
        return self._take(self.ice_drift, self._snow_lock, obj_id)

    def take_item(self, obj_id: int) -> bool:
        return self._take(self.items, self._item_lock, obj_id)

    def take_spitem(self, obj_id: int) -> bool:
        return self._take(self.special_items, self._spitem_lock, obj_id)

    def send_login_ok(self, s_id: int) -> None:
        client = self.clients[s_id]
        client.send(LOGIN_OK.pack(
            ServerPacket.LOGIN_OK, s_id=s_id, color=client.color,
            x=client.x, y=client.y, z=client.z, yaw=client.yaw, id=client.user_id,
        ))

    def send_login_fail(self, s_id: int, reason: int) -> None:
        self.clients[s_id].send(LOGIN_FAIL.pack(ServerPacket.LOGIN_FAIL, reason=int(reason)))

    def send_remove_object(self, s_id: int, victim: int) -> None:
        self.clients[s_id].send(REMOVE_OBJECT.pack(ServerPacket.REMOVE_OBJECT, s_id=victim))

    def send_put_object(self, s_id: int, target: int) -> None:
        other = self.clients[target]
        self.clients[s_id].send(PUT_OBJECT.pack(
            ServerPacket.PUT_OBJECT, s_id=target,
            x=other.x, y=other.y, z=other.z, object_type=0, name=other.name,
        ))

    def send_chat(self, user_id: int, my_id: int, message: str) -> None:
        self.clients[user_id].send(CHAT.pack(ServerPacket.CHAT, id=my_id, message=message))

    def send_status(self, s_id: int) -> None:
        self.clients[s_id].send(STATUS_CHANGE.pack(ServerPacket.STATUS_CHANGE))

    def send_move(self, s_id: int, target: int) -> None:
        other = self.clients[target]
        self.clients[s_id].send(MOVE.pack(
            ServerPacket.MOVE, session_id=target,
            x=other.x, y=other.y, z=other.z,
            vx=other.vx, vy=other.vy, vz=other.vz,
            yaw=other.yaw, direction=other.direction,
        ))

    def send_hp(self, s_id: int) -> None:
        client = self.clients[s_id]
        client.send(HP_CHANGE.pack(ServerPacket.HP, s_id=s_id, hp=client.hp))

    def send_is_bone(self, s_id: int) -> None:
        self.clients[s_id].send(IS_BONE.pack(ServerPacket.IS_BONE))

    def send_game_end(self, winner: int, target: int) -> None:
        self.clients[target].send(GAME_END.pack(ServerPacket.END, s_id=winner))

    def send_state_change(self, s_id: int, target: int, state: int) -> None:
        self.clients[target].send(STATUS_CHANGE.pack(
            ServerPacket.STATUS_CHANGE, s_id=s_id, state=int(state)
        ))

    def send_player_count(self, s_id: int, bear: int, snowman: int) -> None:
        self.clients[s_id].send(PLAYER_COUNT.pack(
            ServerPacket.PLAYER_COUNT, bear=bear, snowman=snowman
        ))

    def send_kill_log(self, s_id: int, attacker: int, victim: int, cause: int) -> None:
        self.clients[s_id].send(KILL_LOG.pack(
            ServerPacket.KILL_LOG, attacker=attacker, victim=victim, cause=int(cause)
        ))

    def broadcast_player_count(self) -> tuple[int, int]:
        """Tell every player how many bears and snowmen remain; return the counts."""
        players = list(self.in_game())
        snowman = sum(1 for c in players if c.is_snowman)
        bear = len(players) - snowman
        for client in players:
            self.send_player_count(client.s_id, bear, snowman)
        return bear, snowman