# snowlobby

`snowlobby` is the lobby server for a multiplayer snowball battle game.
Players connect over TCP, create an account or log in, and gather in the
lobby. When every player in the game has sent a ready packet, the match
starts. From then on the server tracks each player's health, bonfire
warmth, snowballs, iceballs, matches, umbrella and bag. It drops supply
boxes, turns players who run out of health into snowmen, and announces
the winner when one bear is left.

## Installing

```
pip install .
```

To install the test tools as well:

```
pip install ".[test]"
```

## Running the server

```
snowlobby
```

Options:

- `--host`: the address to listen on (default `0.0.0.0`).
- `--port`: the TCP port (default `10001`, the protocol's `SERVER_PORT`).
- `--database`: the SQLite file that holds accounts (default `:memory:`,
  so accounts are lost when the server stops).

Stop the server with Ctrl-C.

## Using the pieces

The package can also be used as a library.

- `snowlobby.protocol` holds the packet constants, the enums of the game
  (`ClientPacket`, `ServerPacket`, `PlayerState`, `Item` and others) and
  the fixed little-endian packet layouts such as `LOGIN`, `MOVE` and
  `PUT_OBJECT`. `PacketLayout.pack` and `PacketLayout.unpack` encode and
  decode one packet. `split_packets` and `PacketAssembler.feed` cut a byte
  stream into whole packets, using the size byte at the front of each one.
  `packet_type` reads the type byte:

  ```python
  from snowlobby.protocol import LOGIN, ClientPacket, packet_type

  data = LOGIN.pack(ClientPacket.LOGIN, id="alice", pw="password", z=0.0)
  packet_type(data)        # 1
  LOGIN.unpack(data)["id"]  # "alice"
  ```

- `snowlobby.locks` provides `ReadWriteLock`, which is held by one writer
  or many readers. The writing thread may lock again and may also read.
  Misuse or a 10-second wait raises `LockError`. `ThreadManager` starts
  threads, each with its own id (`current_thread_id`), and joins them.
- `snowlobby.queues` provides `LockQueue`, a thread-safe FIFO with
  `try_pop` and a blocking `wait_pop`, and `TimerQueue`, which hands back
  `TimerEvent`s earliest first.
- `snowlobby.client` describes one player slot (`Client`) and the account
  record returned at login (`LoginInfo`).
- `snowlobby.state` holds the shared world (`GameState`). It covers the
  player slots, the battle-server slots (`BattleServerSlot`), which snow
  drifts, ice drifts and items are still available, and the helpers that
  build and send outgoing packets.
- `snowlobby.database` keeps accounts in SQLite (`AccountDatabase`).
  Passwords are stored salted and hashed. `login` returns the stored
  win/loss, colour and grade record, but nothing in the package updates
  those counts.
- `snowlobby.actions` (`ItemActions`) and `snowlobby.manager`
  (`PacketManager`) apply incoming packets to the game state.
- `snowlobby.server` ties the parts together into the asyncio
  `LobbyServer`.

## What it does not do

- It does no matchmaking. A `MATCHING` packet is rejected as an unknown
  packet type, and the server never starts or assigns battle servers.
- A battle server can announce itself with a `SERVER_LOGIN` packet and
  receive `SERVER_LOGIN_OK`. Any other battle-server packet, including a
  restart request, is rejected.
- Tornado NPCs are only relayed. Their movement comes from a client that
  logs in as `Tornado`; the server does not move them itself.
- Game timers (bonfire heal, cold damage, supply drops) run only after
  the match has started.

## Tests

```
pytest
```