"""The lobby server: accepts players, reassembles their packets and runs game timers."""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import threading
import time
from typing import Callable, NamedTuple, Optional, Sequence

from snowlobby.database import AccountDatabase
from snowlobby.manager import PacketManager
from snowlobby.protocol import (
    BUFSIZE,
    LOGOUT,
    PUT_OBJECT,
    SERVER_PORT,
    CauseOfDeath,
    ClientState,
    Command,
    EventType,
    HealKind,
    ObjectType,
    PacketAssembler,
    PlayerState,
    ServerPacket,
)
from snowlobby.queues import LockQueue, TimerEvent
from snowlobby.state import GM_ID, GameState, ServerFullError, is_player

log = logging.getLogger(__name__)

BONFIRE_HEAL = 10
COLD_DAMAGE = 1
COLD_ATTACKER = -2
SUPPLY_OFFSET = 10000.0
SUPPLY_HEIGHT = 4500.0
_INT_MAX = 2**31 - 1
_TIMER_POLL = 0.01


class PendingEvent(NamedTuple):
    """A game event waiting to be handled by :meth:`LobbyServer.on_event`."""

    target: int
    player_id: int
    command: Command


class LobbyServer:
    """Gathers players before a match and runs bonfire, cold and supply timers."""

    def __init__(
        self,
        database: Optional[AccountDatabase] = None,
        *,
        host: str = "0.0.0.0",
        port: int = SERVER_PORT,
        state: Optional[GameState] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._owns_database = database is None
        self.database = database if database is not None else AccountDatabase()
        self.host = host
        self.port = port
        self.state = state if state is not None else GameState()
        self.rng = rng or random.Random()
        self.clock = clock
        self.manager = PacketManager(self.state, self.database, self.rng, clock)
        self.events: LockQueue[PendingEvent] = LockQueue()
        self.listening = threading.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: dict[int, asyncio.StreamWriter] = {}
        self._closing = False

    async def serve(self) -> None:
        """Listen for players until :meth:`close` is called."""
        self._closing = False
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        self.listening.set()
        timer = asyncio.create_task(self._run_timer())
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            if not self._closing:
                raise
        finally:
            self.listening.clear()
            timer.cancel()
            await asyncio.gather(timer, return_exceptions=True)
            self._close_connections()
            self._server.close()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            s_id = self.state.allocate_id()
        except ServerFullError:
            log.warning("user over")
            writer.close()
            return
        client = self.state.clients[s_id]
        client.assembler = PacketAssembler()
        client.sender = writer.write
        self._writers[s_id] = writer
        log.info("player %d accepted", s_id)
        try:
            while True:
                try:
                    data = await reader.read(BUFSIZE)
                except ConnectionError:
                    data = b""
                if not self.on_recv(s_id, data):
                    break
                await writer.drain()
        except Exception:
            log.exception("connection of player %d failed", s_id)
            if self._writers.get(s_id) is writer:
                self.disconnect(s_id)

    async def _run_timer(self) -> None:
        while not self.manager.game_started.is_set():
            await asyncio.sleep(_TIMER_POLL * 5)
        self.state.timer_queue.clear()
        self.manager.put_supply_box()
        while True:
            self.process_timer(self.clock())
            self._dispatch_events()
            await asyncio.sleep(_TIMER_POLL)

    def _dispatch_events(self) -> int:
        handled = 0
        while (event := self.events.try_pop()) is not None:
            self.on_event(event.target, event.command)
            handled += 1
        return handled

    def on_recv(self, s_id: int, data: bytes) -> bool:
        """Handle bytes received from slot ``s_id``; False once it is disconnected."""
        if not data:
            log.info("player %d closed the connection", s_id)
            self.disconnect(s_id)
            return False
        client = self.state.clients[s_id]
        try:
            packets = client.assembler.feed(data)
        except ValueError as exc:
            log.warning("bad stream from %d: %s", s_id, exc)
            self.disconnect(s_id)
            return False
        for packet in packets:
            try:
                if client.cl_state == ClientState.SERVER:
                    self._process_link(s_id, packet)
                else:
                    self.manager.process_packet(s_id, packet)
            except ValueError as exc:
                log.warning("packet from %d rejected: %s", s_id, exc)
        return True

    def _process_link(self, s_id: int, packet: bytes) -> None:
        client = self.state.clients[s_id]
        for index, slot in enumerate(self.state.battle_servers):
            if slot.link is client:
                self.manager.process_server_packet(index, packet)
                return
        raise ValueError(f"connection {s_id} is not linked to a battle server")

    def _snowman_outcome(self, victim: int) -> None:
        bears = [
            other.s_id for other in self.state.in_game()
            if other.s_id != victim and not other.is_snowman
        ]
        if len(bears) == 1:
            for other in list(self.state.in_game()):
                self.state.send_game_end(bears[0], other.s_id)
            log.info("game over, winner %d", bears[0])
        else:
            self.state.broadcast_player_count()

    def on_event(self, s_id: int, command: int) -> bool:
        """Apply a bonfire heal, a cold tick or a supply drop."""
        if command == Command.PLAYER_HEAL:
            client = self.state.clients[s_id]
            if client.hp + BONFIRE_HEAL <= client.MAX_HP:
                client.hp += BONFIRE_HEAL
                self.manager.heal(s_id, HealKind.BONFIRE)
            else:
                client.hp = client.MAX_HP
            self.state.send_hp(s_id)
        elif command == Command.PLAYER_DAMAGE:
            self._cold_tick(s_id)
        elif command == Command.OBJ_SPAWN:
            self._spawn_supply_box()
        return True

    def _cold_tick(self, s_id: int) -> None:
        client = self.state.clients[s_id]
        if client.is_snowman or client.is_bone:
            return
        if client.hp - COLD_DAMAGE > client.MIN_HP:
            client.hp -= COLD_DAMAGE
            self.manager.cold_damage(s_id)
            self.state.send_hp(s_id)
        elif client.hp - COLD_DAMAGE == client.MIN_HP:
            client.become_snowman()
            client.hp -= COLD_DAMAGE
            self.state.send_hp(s_id)
            for other in list(self.state.in_game()):
                self.state.send_state_change(s_id, other.s_id, PlayerState.SNOWMAN)
                self.state.send_kill_log(other.s_id, COLD_ATTACKER, s_id, CauseOfDeath.COLD)
            log.info("player %d froze by the cold", s_id)
            self._snowman_outcome(s_id)

    def _spawn_supply_box(self) -> None:
        x = self.rng.randint(0, _INT_MAX) - SUPPLY_OFFSET
        y = self.rng.randint(0, _INT_MAX) - SUPPLY_OFFSET
        packet = PUT_OBJECT.pack(
            ServerPacket.PUT_OBJECT, object_type=ObjectType.SUPPLY_BOX,
            x=x, y=y, z=SUPPLY_HEIGHT,
        )
        for other in list(self.state.in_game()):
            if other.pl_state == PlayerState.TORNADO:
                continue
            other.send(packet)
        self.manager.put_supply_box()

    def put_event(self, target: int, player_id: int, command: int) -> None:
        """Queue a game event for :meth:`on_event`."""
        self.events.push(PendingEvent(target, player_id, Command(command)))

    def process_timer(self, now: float) -> list[TimerEvent]:
        """Fire every timer event due at ``now``; return the ones that fired."""
        fired: list[TimerEvent] = []
        queue = self.state.timer_queue
        while (event := queue.try_pop()) is not None:
            if event.this_id == GM_ID:
                if event.start_time > now:
                    queue.push(event)
                    break
                if event.order == EventType.SUPPLY_DROP:
                    self.put_event(0, 0, Command.OBJ_SPAWN)
                fired.append(event)
                continue
            if not is_player(event.this_id):
                continue
            client = self.state.clients[event.this_id]
            if client.cl_state != ClientState.INGAME or not client.is_active:
                continue
            if event.start_time > now:
                queue.push(event)
                break
            if event.order == EventType.BONFIRE:
                if not client.is_bone:
                    continue
                self.put_event(event.this_id, event.target_id, Command.PLAYER_HEAL)
            elif event.order == EventType.BONFIRE_OUT:
                if client.is_bone:
                    continue
                self.put_event(event.this_id, event.target_id, Command.PLAYER_DAMAGE)
            elif event.order == EventType.MATCH:
                self.put_event(event.this_id, event.target_id, Command.PLAYER_HEAL)
            elif event.order == EventType.END_MATCH:
                self.state.send_is_bone(event.this_id)
            fired.append(event)
        return fired

    def disconnect(self, s_id: int) -> None:
        """Tell the others the player left, then free and reset its slot."""
        client = self.state.clients[s_id]
        notice = LOGOUT.pack(ServerPacket.LOGOUT, s_id=s_id)
        for other in self.state.clients:
            if other.s_id == s_id:
                continue
            with other.state_lock:
                in_game = other.cl_state == ClientState.INGAME
            if in_game:
                other.send(notice)
        with client.state_lock:
            client.cl_state = ClientState.FREE
        for slot in self.state.battle_servers:
            if slot.link is client:
                slot.link = None
        client.reset()
        client.s_id = s_id
        client.sender = None
        writer = self._writers.pop(s_id, None)
        if writer is not None:
            writer.close()
        log.info("player %d disconnected", s_id)

    def restart(self) -> None:
        """Drop every connection and put the lobby back to a fresh game."""
        self._close_connections()
        self.state.reset()
        self.manager.game_started.clear()
        while self.events.try_pop() is not None:
            pass

    def _close_connections(self) -> None:
        writers = list(self._writers.values())
        self._writers.clear()
        for writer in writers:
            try:
                writer.close()
            except RuntimeError:
                pass

    def close(self) -> None:
        """Stop listening and release the connections."""
        self._closing = True
        if self._server is not None:
            self._server.close()
        self._close_connections()
        if self._owns_database:
            self.database.close()
            self._owns_database = False


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run the lobby server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=SERVER_PORT)
    parser.add_argument("--database", default=":memory:", help="SQLite file of accounts")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    database = AccountDatabase(args.database)
    server = LobbyServer(database, host=args.host, port=args.port)
    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        pass
    finally:
        server.close()
        database.close()
    return 0