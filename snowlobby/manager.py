"""Dispatches packets from players and battle servers to the lobby's game rules."""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from typing import Callable, Optional

from snowlobby.actions import ItemActions
from snowlobby.client import Client
from snowlobby.database import AccountDatabase
from snowlobby.protocol import (
    ATTACK,
    DAMAGE,
    LOGIN,
    MAX_USER,
    MOVE,
    PUT_OBJECT,
    READY,
    SERVER_LOGIN,
    SERVER_LOGIN_OK,
    SERVER_PORT,
    START,
    STATUS_CHANGE,
    AttackKind,
    BulletType,
    CauseOfDeath,
    ClientPacket,
    ClientState,
    EventType,
    HealKind,
    LoginFailReason,
    ObjectType,
    PlayerState,
    ServerLinkPacket,
    ServerPacket,
    ServerState,
    SnowAction,
    packet_type,
)
from snowlobby.queues import TimerEvent
from snowlobby.state import GM_ID, GameState

log = logging.getLogger(__name__)

TORNADO_LOGIN = "Tornado"
GM_LOGIN = "testuser"
HIT_DAMAGE = 30
MATCH_HEAL = 30
TICK_DELAY = 1.0
SUPPLY_DELAY = 60.0
SPAWN_RADIUS = 600.0
TORNADO_COUNT = 3


class PacketManager:
    """Applies each received packet to the shared game state."""

    def __init__(
        self,
        state: GameState,
        database: AccountDatabase,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.database = database
        self.rng = rng or random.Random()
        self.clock = clock
        self.game_started = threading.Event()
        self.s_id = 0
        self.data = b""
        self._handlers: dict[int, Callable[[], object]] = {
            ClientPacket.LOGIN: self.login,
            ClientPacket.ACCOUNT: self.create_account,
            ClientPacket.MOVE: lambda: self.move(ClientPacket.MOVE),
            ClientPacket.ATTACK: lambda: self.attack(AttackKind.HAND),
            ClientPacket.GUNATTACK: lambda: self.attack(AttackKind.GUN),
            ClientPacket.DAMAGE: self.damage,
            ClientPacket.MATCH: lambda: self.heal(self.s_id, HealKind.MATCH),
            ClientPacket.UMB: lambda: self._actions().use_umbrella(),
            ClientPacket.CHAT: lambda: self._actions().cheat(),
            ClientPacket.GET_ITEM: lambda: self._actions().get_item(),
            ClientPacket.THROW_SNOW: lambda: self._actions().snow(SnowAction.CREATE),
            ClientPacket.CANCEL_SNOW: lambda: self._actions().snow(SnowAction.DESTROY),
            ClientPacket.GUNFIRE: lambda: self._actions().gun_fire(),
            ClientPacket.LOGOUT: self._logout,
            ClientPacket.STATUS_CHANGE: self.set_status,
            ClientPacket.READY: self.ready,
            ClientPacket.OPEN_BOX: lambda: self._actions().item_box(ClientPacket.OPEN_BOX),
            ClientPacket.PUT_OBJECT: lambda: self._actions().item_box(ClientPacket.PUT_OBJECT),
            ClientPacket.NPC_MOVE: lambda: self.move(ClientPacket.NPC_MOVE),
            ClientPacket.FREEZE: lambda: self._actions().freeze(),
            ClientPacket.SERVER_LOGIN: self.server_login,
        }

    @property
    def client(self) -> Client:
        return self.state.clients[self.s_id]

    def _actions(self) -> ItemActions:
        return ItemActions(self.state, self.s_id, self.data, self.rng, self.clock)

    def _logout(self) -> bool:
        log.info("logout received from player %d", self.s_id)
        return True

    def process_packet(self, s_id: int, data: bytes) -> object:
        """Handle one complete packet from the player in slot ``s_id``."""
        self.s_id = s_id
        self.data = bytes(data)
        kind = packet_type(self.data)
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValueError(f"unknown packet type {kind}")
        return handler()

    def process_server_packet(self, s_id: int, data: bytes) -> bool:
        """Handle one complete packet from the battle server in slot ``s_id``."""
        slot = self.state.battle_servers[s_id]
        kind = packet_type(data)
        if kind == ServerLinkPacket.SERVER_LOGIN:
            slot.s_id = s_id
            return True
        if kind == ServerLinkPacket.SERVER_LOGIN_OK:
            return True
        raise ValueError(f"unknown server packet type {kind}")

    def login(self) -> bool:
        """Log a player in; True on success, False after sending a failure."""
        packet = LOGIN.unpack(self.data)
        user_id, password, z = packet["id"], packet["pw"], packet["z"]
        cl = self.client

        if user_id == TORNADO_LOGIN:
            self.state.tornado = True
            cl.pl_state = PlayerState.TORNADO
            self.state.send_login_ok(self.s_id)
            return True

        if user_id == GM_LOGIN:
            self.set_pos(self.s_id, f"{user_id}{self.s_id}", password, z)
            cl.color = self.state.next_color()
            self.state.send_login_ok(self.s_id)
            self.send_player_info(self.s_id)
            return True

        for other in self.state.clients[:MAX_USER]:
            with other.state_lock:
                taken = other.cl_state == ClientState.INGAME and other.user_id == user_id
            if taken:
                log.info("%s is already connected", user_id)
                self.state.send_login_fail(self.s_id, LoginFailReason.OVERLAP_ACCOUNT)
                return False

        info = self.database.login(user_id, password)
        if info is None:
            reason = (
                LoginFailReason.WRONG_PW
                if self.database.check_id(user_id)
                else LoginFailReason.WRONG_ID
            )
            self.state.send_login_fail(self.s_id, reason)
            return False

        cl.login_info = info
        self.set_pos(self.s_id, user_id, password, z)
        cl.color = self.state.next_color()
        log.info("player %d logged in as %s", self.s_id, user_id)
        self.state.send_login_ok(self.s_id)
        self.send_player_info(self.s_id)
        return True

    def create_account(self) -> bool:
        """Register a new account and report the outcome as a login-fail reason."""
        packet = LOGIN.unpack(self.data)
        user_id, password = packet["id"], packet["pw"]
        if user_id == TORNADO_LOGIN:
            return True
        if self.database.check_id(user_id):
            self.state.send_login_fail(self.s_id, LoginFailReason.OVERLAP_ID)
            return True
        cl = self.client
        cl.user_id = user_id
        cl.pw = password
        self.database.sign_up(user_id, password)
        self.state.send_login_fail(self.s_id, LoginFailReason.CREATE_ACCOUNT)
        return True

    def move(self, packet_kind: int) -> None:
        """Apply a player or NPC movement and relay it to the other players."""
        packet = MOVE.unpack(self.data)
        if packet_kind == ClientPacket.MOVE:
            cl = self.client
            cl.x, cl.y, cl.z = packet["x"], packet["y"], packet["z"]
            cl.yaw = packet["yaw"]
            cl.vx, cl.vy, cl.vz = packet["vx"], packet["vy"], packet["vz"]
            cl.direction = packet["direction"]
            for other in list(self.state.in_game()):
                if other.s_id != self.s_id:
                    self.state.send_move(other.s_id, cl.s_id)
        elif packet_kind == ClientPacket.NPC_MOVE:
            if self.state.start_game:
                fields = {name: packet[name] for name in MOVE.field_names}
                relay = MOVE.pack(ServerPacket.NPC_MOVE, **fields)
                for other in list(self.state.in_game()):
                    if other.s_id == self.s_id or other.pl_state == PlayerState.TORNADO:
                        continue
                    other.send(relay)
            else:
                session = packet["session_id"]
                if not 0 <= session < len(self.state.clients):
                    raise IndexError(f"session id {session} out of range")
                npc = self.state.clients[session]
                npc.x, npc.y, npc.z = packet["x"], packet["y"], packet["z"]
                npc.vx, npc.vy, npc.vz = packet["vx"], packet["vy"], packet["vz"]

    def attack(self, kind: int) -> None:
        """Relay a throwing or shotgun attack to every player in the game."""
        packet = ATTACK.unpack(self.data)
        reply = ServerPacket.ATTACK if kind == AttackKind.HAND else ServerPacket.GUNATTACK
        if kind not in (AttackKind.HAND, AttackKind.GUN):
            return
        payload = ATTACK.pack(reply, s_id=packet["s_id"], bullet=packet["bullet"])
        for other in list(self.state.in_game()):
            other.send(payload)

    def _after_snowman(self, victim: int) -> Optional[int]:
        """End the game when one bear is left, else announce the counts."""
        bears = [
            other.s_id for other in self.state.in_game()
            if other.s_id != victim and not other.is_snowman
        ]
        if len(bears) == 1:
            for other in list(self.state.in_game()):
                self.state.send_game_end(bears[0], other.s_id)
            log.info("game over, winner %d", bears[0])
            return bears[0]
        self.state.broadcast_player_count()
        return None

    def damage(self) -> bool:
        """Apply a snowball hit to the sender; False when already a snowman."""
        packet = DAMAGE.unpack(self.data)
        cl = self.client
        if cl.is_snowman:
            return False
        current_hp = cl.hp
        cl.hp = max(cl.hp - HIT_DAMAGE, cl.MIN_HP)
        self.state.send_hp(cl.s_id)

        if current_hp == cl.MAX_HP and cl.is_bone:
            cl.is_active = True
            self.heal(self.s_id, HealKind.BONFIRE)

        if cl.hp <= cl.MIN_HP:
            cl.hp = cl.MIN_HP
            cl.become_snowman()
            status = STATUS_CHANGE.pack(
                ServerPacket.STATUS_CHANGE, s_id=self.s_id, state=PlayerState.SNOWMAN
            )
            causes = {
                BulletType.SNOWBALL: CauseOfDeath.SNOWBALL,
                BulletType.SNOWBOMB: CauseOfDeath.SNOWBALL_BOMB,
            }
            cause = causes.get(packet["bullet"])
            for other in list(self.state.in_game()):
                other.send(status)
                if cause is not None:
                    self.state.send_kill_log(other.s_id, packet["attacker"], cl.s_id, cause)
            self._after_snowman(cl.s_id)
        return True

    def cold_damage(self, s_id: int) -> None:
        """Schedule the next tick of cold damage for a player out of the bonfire."""
        client = self.state.clients[s_id]
        if not client.is_snowman and client.hp > client.MIN_HP:
            self.timer_event(s_id, s_id, EventType.BONFIRE_OUT, TICK_DELAY)

    def heal(self, s_id: int, kind: int) -> None:
        """Schedule a bonfire heal, or burn a match for an immediate heal."""
        client = self.state.clients[s_id]
        if kind == HealKind.BONFIRE:
            if not client.is_snowman and client.hp < client.MAX_HP:
                self.timer_event(s_id, s_id, EventType.BONFIRE, TICK_DELAY)
        elif kind == HealKind.MATCH:
            if client.is_snowman or client.match_count <= 0:
                return
            client.match_count -= 1
            client.hp = min(client.hp + MATCH_HEAL, client.MAX_HP)
            self.state.send_hp(client.s_id)

    def ready(self) -> bool:
        """Mark the sender ready; start the game once every player is. True on start."""
        cl = self.client
        cl.ready = True
        notice = READY.pack(ServerPacket.READY, s_id=self.s_id)
        others = [o for o in self.state.in_game() if o.s_id != self.s_id]
        for other in others:
            other.send(notice)
        if not all(other.ready for other in others):
            return False

        start = START.pack(ServerPacket.START)
        for other in list(self.state.in_game()):
            other.send(start)
        self.state.broadcast_player_count()
        self.game_started.set()
        self.state.start_game = True
        log.info("game start")
        return True

    def set_status(self) -> bool:
        """Apply a bonfire, snowman or animal status change reported by a client."""
        packet = STATUS_CHANGE.unpack(self.data)
        new_state = packet["state"]
        cl = self.client

        if new_state == PlayerState.INBURN:
            if cl.is_snowman:
                return False
            cl.is_bone = True
            cl.is_active = True
            self.heal(self.s_id, HealKind.BONFIRE)
        elif new_state == PlayerState.OUTBURN:
            if cl.is_snowman:
                return False
            cl.is_bone = False
            cl.is_active = True
            self.cold_damage(cl.s_id)
        elif new_state == PlayerState.SNOWMAN:
            target = self.state.clients[packet["s_id"]]
            if not target.is_snowman:
                target.hp = target.MIN_HP
                target.become_snowman()
                for other in list(self.state.in_game()):
                    self.state.send_state_change(target.s_id, other.s_id, PlayerState.SNOWMAN)
                    self.state.send_kill_log(
                        other.s_id, cl.s_id, target.s_id, CauseOfDeath.SNOWMAN
                    )
                self._after_snowman(target.s_id)
        elif new_state == PlayerState.ANIMAL:
            target = self.state.clients[packet["s_id"]]
            if target.is_snowman:
                target.hp = target.BEGIN_SLOW_HP
                target.is_snowman = False
                for other in list(self.state.in_game()):
                    self.state.send_state_change(target.s_id, other.s_id, PlayerState.ANIMAL)
        return True

    def set_pos(self, s_id: int, user_id: str, password: str, z: float) -> None:
        """Put a freshly logged-in player at its spawn point with full health."""
        client = self.state.clients[s_id]
        client.user_id = user_id
        client.pw = password
        client.cl_state = ClientState.INGAME
        client.x = SPAWN_RADIUS * math.cos(s_id + 45.0)
        client.y = SPAWN_RADIUS * math.sin(s_id + 45.0)
        client.z = z
        client.yaw = s_id * 55.0 - 115.0
        if client.yaw > 180:
            client.yaw -= 360
        client.hp = client.MAX_HP

    @staticmethod
    def _player_object(client: Client) -> bytes:
        return PUT_OBJECT.pack(
            ServerPacket.PUT_OBJECT, s_id=client.s_id, obj_id=client.color,
            x=client.x, y=client.y, z=client.z, yaw=client.yaw,
            object_type=ObjectType.PLAYER, name=client.user_id,
        )

    def send_player_info(self, s_id: int) -> None:
        """Introduce a new player to the others, and the others (and tornadoes) to it."""
        client = self.state.clients[s_id]
        others = []
        for other in self.state.clients:
            if other.s_id == s_id or other.pl_state == PlayerState.TORNADO:
                continue
            with other.state_lock:
                if other.cl_state != ClientState.INGAME:
                    continue
            others.append(other)

        introduction = self._player_object(client)
        for other in others:
            other.send(introduction)
        for other in others:
            client.send(self._player_object(other))

        if self.state.tornado:
            for npc in self.state.clients[MAX_USER:MAX_USER + TORNADO_COUNT]:
                client.send(PUT_OBJECT.pack(
                    ServerPacket.PUT_OBJECT, s_id=npc.s_id,
                    x=npc.x, y=npc.y, z=npc.z, yaw=0.0,
                    object_type=ObjectType.TORNADO,
                ))

    def put_supply_box(self) -> None:
        """Schedule the next supply drop."""
        self.timer_event(GM_ID, GM_ID, EventType.SUPPLY_DROP, SUPPLY_DELAY)

    def timer_event(self, this_id: int, target_id: int, order: int, delay: float) -> TimerEvent:
        """Queue an event to fire ``delay`` seconds from now."""
        event = TimerEvent(
            start_time=self.clock() + delay,
            this_id=this_id,
            target_id=target_id,
            order=int(order),
        )
        self.state.timer_queue.push(event)
        return event

    def server_login(self) -> bool:
        """Bind the sending connection to the battle server whose port it announces."""
        packet = SERVER_LOGIN.unpack(self.data)
        port = packet["port_num"]
        index = port - SERVER_PORT
        if not 0 <= index < len(self.state.battle_servers):
            raise ValueError(f"no battle server slot for port {port}")
        slot = self.state.battle_servers[index]
        slot.port_num = port
        slot.transition(ServerState.MATCHING)
        cl = self.client
        slot.link = cl
        cl.cl_state = ClientState.SERVER
        cl.send(SERVER_LOGIN_OK.pack(ServerLinkPacket.SERVER_LOGIN_OK, server_id=slot.s_id))
        return True