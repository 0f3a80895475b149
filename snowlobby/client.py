"""Per-connection player record kept by the lobby server."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from snowlobby.protocol import AttackKind, ClientState, PacketAssembler, PlayerState

Sender = Callable[[bytes], None]


@dataclass
class LoginInfo:
    """Account record returned by the account database on login."""

    name: str = ""
    wins: int = 0
    losses: int = 0
    color: int = 0
    grade: int = 0


class Client:
    """One player slot: identity, position, health, inventory and connection."""

    MAX_HP = 390
    MIN_HP = 270
    BEGIN_SLOW_HP = 300

    ORIGIN_MAX_MATCH = 2
    ORIGIN_MAX_SNOWBALL = 10
    ORIGIN_MAX_ICEBALL = 10

    BAG_MAX_MATCH = 3
    BAG_MAX_SNOWBALL = 15
    BAG_MAX_ICEBALL = 15

    def __init__(self, s_id: int = 0, sender: Optional[Sender] = None) -> None:
        self.view_lock = threading.Lock()
        self.hp_lock = threading.Lock()
        self.state_lock = threading.Lock()
        self.sender = sender
        self.cl_state = ClientState.FREE
        self.pl_state = PlayerState.SNOWMAN
        self.combat = AttackKind.HAND
        self.color = 0
        self.login_info = LoginInfo()
        self.reset()
        self.s_id = s_id

    def reset(self) -> None:
        """Return the player data to its starting values.

        The connection state, colour and transport are left as they are.
        """
        self.s_id = 0
        self.name = ""
        self.user_id = ""
        self.pw = ""
        self.x = self.y = self.z = 0.0
        self.yaw = self.pitch = self.roll = 0.0
        self.vx = self.vy = self.vz = 0.0
        self.direction = 0.0

        self.hp = self.MAX_HP
        self.attack_range = 1
        self.skill_range = 2
        self.is_bone = True
        self.is_match = False

        self.max_snowball = self.ORIGIN_MAX_SNOWBALL
        self.max_iceball = self.ORIGIN_MAX_ICEBALL
        self.max_match = self.ORIGIN_MAX_MATCH
        self.snowball_count = 0
        self.iceball_count = 0
        self.match_count = 0
        self.has_umbrella = False
        self.is_riding = False
        self.has_bag = False
        self.has_shotgun = False
        self.is_snowman = False
        self.ready = False
        self.dot_damage = False

        self.viewlist: set[int] = set()
        self.is_active = False
        self.count = 0
        self.assembler = PacketAssembler()
        self.last_move_time = 0

    def send(self, payload: bytes) -> bool:
        """Hand a packet to the transport; False when the slot has none."""
        sender = self.sender
        if sender is None:
            return False
        sender(bytes(payload))
        return True

    def become_snowman(self) -> None:
        """Drop every item and carrying bonus and turn into a snowman."""
        self.snowball_count = 0
        self.iceball_count = 0
        self.match_count = 0
        self.max_snowball = self.ORIGIN_MAX_SNOWBALL
        self.max_iceball = self.ORIGIN_MAX_ICEBALL
        self.max_match = self.ORIGIN_MAX_MATCH
        self.has_bag = False
        self.has_shotgun = False
        self.has_umbrella = False
        self.is_snowman = True