"""Handlers for item, snowball, cheat and freeze packets sent by one player."""

from __future__ import annotations

import random
import time
from typing import Callable, Iterable, Optional

from snowlobby.client import Client
from snowlobby.protocol import (
    CANCEL_SNOW,
    CHEAT,
    FIRE,
    FREEZE,
    GET_ITEM,
    MAX_BULLET_RANG,
    OPEN_BOX,
    PUT_OBJECT,
    STATUS_CHANGE,
    THROW_SNOW,
    UMB,
    BulletType,
    CheatType,
    ClientPacket,
    EventType,
    Item,
    PlayerState,
    ServerPacket,
    SnowAction,
)
from snowlobby.queues import TimerEvent
from snowlobby.state import GameState

DRIFT_AMOUNT = 5
HEAL_AMOUNT = 30
HIT_DAMAGE = 30
GUN_MIN_SNOWBALLS = 4
GUN_COST = 5
BONFIRE_DELAY = 1.0


class ItemActions:
    """Acts on one received packet from the player in slot ``s_id``."""

    def __init__(
        self,
        state: GameState,
        s_id: int,
        data: bytes,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.s_id = s_id
        self.data = bytes(data)
        self.rng = rng or random.Random()
        self.clock = clock

    @property
    def client(self) -> Client:
        return self.state.clients[self.s_id]

    def _broadcast(self, payload: bytes, exclude: Iterable[int] = ()) -> int:
        skipped = set(exclude)
        sent = 0
        for other in self.state.in_game():
            if other.s_id in skipped:
                continue
            other.send(payload)
            sent += 1
        return sent

    def _schedule_bonfire_heal(self, s_id: int) -> None:
        client = self.state.clients[s_id]
        if not client.is_snowman and client.hp < client.MAX_HP:
            self.state.timer_queue.push(TimerEvent(
                start_time=self.clock() + BONFIRE_DELAY,
                this_id=s_id,
                target_id=s_id,
                order=EventType.BONFIRE,
            ))

    def get_item(self) -> bool:
        """Pick up the item named in a GET_ITEM packet; True when it was announced."""
        packet = GET_ITEM.unpack(self.data)
        cl = self.client
        kind = packet["item_type"]
        obj_id = packet["destroy_obj_id"]
        fields = {k: packet[k] for k in ("s_id", "item_type", "current_bullet", "destroy_obj_id")}
        exclude: tuple[int, ...] = ()

        if kind == Item.BAG:
            got = self.state.take_item(obj_id)
            if not cl.has_bag:
                cl.max_snowball = cl.BAG_MAX_SNOWBALL
                cl.max_iceball = cl.BAG_MAX_ICEBALL
                cl.max_match = cl.BAG_MAX_MATCH
                cl.has_bag = True
            if not got:
                return False
        elif kind == Item.UMBRELLA:
            if not (self.state.take_item(obj_id) and not cl.has_umbrella):
                return False
            cl.has_umbrella = True
        elif kind == Item.JETSKI:
            exclude = (self.s_id,)
        elif kind == Item.MATCH:
            if not (self.state.take_item(obj_id) and cl.max_match > cl.match_count):
                return False
            cl.match_count += 1
        elif kind == Item.SNOW:
            if not self.state.take_snowdrift(obj_id):
                return False
            cl.snowball_count = min(cl.snowball_count + DRIFT_AMOUNT, cl.max_snowball)
            fields["current_bullet"] = cl.snowball_count
        elif kind == Item.ICE:
            if not self.state.take_icedrift(obj_id):
                return False
            cl.iceball_count = min(cl.iceball_count + DRIFT_AMOUNT, cl.max_iceball)
            fields["current_bullet"] = cl.iceball_count
        elif kind == Item.SUPPLY_BOX:
            if not self.state.take_spitem(obj_id):
                return False
            cl.snowball_count = cl.max_snowball
            cl.iceball_count = cl.max_iceball
            cl.match_count = cl.max_match
            fields["current_bullet"] = cl.max_iceball
        else:
            return False

        self._broadcast(GET_ITEM.pack(ServerPacket.GET_ITEM, **fields), exclude)
        return True

    def use_umbrella(self) -> bool:
        """Relay an umbrella open/close from a player who owns one."""
        cl = self.client
        if cl.is_snowman or not cl.has_umbrella:
            return False
        packet = UMB.unpack(self.data)
        self._broadcast(UMB.pack(ServerPacket.UMB, s_id=packet["s_id"], end=packet["end"]))
        return True

    def item_box(self, packet_kind: int) -> bool:
        """Relay an opened item box or a placed object; False for snowmen."""
        if packet_kind == ClientPacket.OPEN_BOX:
            if self.client.is_snowman:
                return False
            packet = OPEN_BOX.unpack(self.data)
            self._broadcast(
                OPEN_BOX.pack(ServerPacket.OPEN_BOX, open_obj_id=packet["open_obj_id"]),
                exclude=(self.s_id,),
            )
        elif packet_kind == ClientPacket.PUT_OBJECT:
            if self.client.is_snowman:
                return False
            packet = PUT_OBJECT.unpack(self.data)
            fields = {name: packet[name] for name in PUT_OBJECT.field_names}
            self._broadcast(PUT_OBJECT.pack(ServerPacket.PUT_OBJECT, **fields))
        return True

    def cheat(self) -> None:
        """Apply a developer cheat from a CHAT packet."""
        packet = CHEAT.unpack(self.data)
        cl = self.client
        kind = packet["cheat_type"]

        if kind == CheatType.HP_UP:
            cl.hp = min(cl.hp + HEAL_AMOUNT, cl.MAX_HP)
            self.state.send_hp(cl.s_id)
        elif kind == CheatType.HP_DOWN:
            self._cheat_hp_down(cl)
        elif kind == CheatType.SNOW_PLUS:
            cl.snowball_count = min(cl.snowball_count + DRIFT_AMOUNT, cl.max_snowball)
            self._broadcast(GET_ITEM.pack(
                ServerPacket.GET_ITEM, s_id=cl.s_id, item_type=Item.SNOW,
                destroy_obj_id=-1, current_bullet=cl.snowball_count,
            ))
        elif kind == CheatType.ICE_PLUS:
            cl.iceball_count = min(cl.iceball_count + DRIFT_AMOUNT, cl.max_iceball)
            self._broadcast(GET_ITEM.pack(
                ServerPacket.GET_ITEM, s_id=cl.s_id, item_type=Item.ICE,
                destroy_obj_id=-1, current_bullet=cl.iceball_count,
            ))

    def _cheat_hp_down(self, cl: Client) -> None:
        if cl.is_snowman:
            return
        current_hp = cl.hp
        cl.hp = max(cl.hp - HIT_DAMAGE, cl.MIN_HP)
        self.state.send_hp(cl.s_id)

        if current_hp == cl.MAX_HP and cl.is_bone:
            cl.is_active = True
            self._schedule_bonfire_heal(cl.s_id)

        if cl.hp > cl.MIN_HP:
            return
        cl.snowball_count = 0
        cl.iceball_count = 0
        cl.match_count = 0
        cl.max_snowball = cl.ORIGIN_MAX_SNOWBALL
        cl.max_match = cl.ORIGIN_MAX_MATCH
        cl.has_bag = False
        cl.has_umbrella = False
        cl.is_snowman = True
        self._broadcast(STATUS_CHANGE.pack(
            ServerPacket.STATUS_CHANGE, s_id=self.s_id, state=PlayerState.SNOWMAN
        ))
        bears = [
            other.s_id for other in self.state.in_game()
            if other.s_id != cl.s_id and not other.is_snowman
        ]
        if len(bears) == 1:
            for other in list(self.state.in_game()):
                self.state.send_game_end(bears[0], other.s_id)

    def snow(self, kind: int) -> None:
        """Relay a thrown or cancelled snowball, spending ammunition on a throw."""
        cl = self.client
        if kind == SnowAction.CREATE:
            packet = THROW_SNOW.unpack(self.data)
            if packet["bullet"] == BulletType.SNOWBALL and cl.snowball_count > 0:
                cl.snowball_count -= 1
            elif packet["bullet"] == BulletType.ICEBALL and cl.iceball_count > 0:
                cl.iceball_count -= 1
            fields = {name: packet[name] for name in THROW_SNOW.field_names}
            self._broadcast(THROW_SNOW.pack(ServerPacket.THROW_SNOW, **fields))
        elif kind == SnowAction.DESTROY:
            packet = CANCEL_SNOW.unpack(self.data)
            self._broadcast(CANCEL_SNOW.pack(
                ServerPacket.CANCEL_SNOW, s_id=packet["s_id"], bullet=packet["bullet"]
            ))

    def freeze(self) -> bool:
        """Relay a freeze hit; False when the sender is a snowman."""
        if self.client.is_snowman:
            return False
        packet = FREEZE.unpack(self.data)
        self._broadcast(FREEZE.pack(
            ServerPacket.FREEZE, s_id=packet["s_id"], body_part=packet["body_part"]
        ))
        return True

    def gun_fire(self) -> bool:
        """Fire the snowball shotgun; each player receives its own pellet order."""
        cl = self.client
        if cl.snowball_count < GUN_MIN_SNOWBALLS:
            return False
        cl.snowball_count -= GUN_COST
        packet = FIRE.unpack(self.data)
        for other in list(self.state.in_game()):
            other.send(FIRE.pack(
                ServerPacket.GUNFIRE, s_id=packet["s_id"], pitch=packet["pitch"],
                rand_int=self.random_bullet_order(),
            ))
        return True

    def random_bullet_order(self) -> list[int]:
        """A random ordering of the shotgun's pellet slots."""
        return self.rng.sample(range(MAX_BULLET_RANG), MAX_BULLET_RANG)