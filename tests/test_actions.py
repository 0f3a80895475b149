import random

import pytest

from snowlobby.actions import ItemActions
from snowlobby.protocol import (
    CANCEL_SNOW,
    CHEAT,
    FIRE,
    FREEZE,
    GAME_END,
    GET_ITEM,
    HP_CHANGE,
    MAX_BULLET_RANG,
    OPEN_BOX,
    PUT_OBJECT,
    STATUS_CHANGE,
    THROW_SNOW,
    UMB,
    BulletType,
    CheatType,
    ClientPacket,
    ClientState,
    EventType,
    Item,
    ServerPacket,
    SnowAction,
    packet_type,
)
from snowlobby.state import GameState


@pytest.fixture
def game():
    state = GameState()
    outboxes = {}
    for s_id in range(3):
        client = state.clients[s_id]
        client.cl_state = ClientState.INGAME
        outboxes[s_id] = []
        client.sender = outboxes[s_id].append
    return state, outboxes


def get_item(item, obj_id=0, s_id=0):
    return GET_ITEM.pack(ClientPacket.GET_ITEM, s_id=s_id, item_type=item, destroy_obj_id=obj_id)


def test_snowdrift_adds_five_and_is_claimed_once(game):
    state, out = game
    assert ItemActions(state, 0, get_item(Item.SNOW, 7)).get_item() is True
    assert state.clients[0].snowball_count == 5
    sent = GET_ITEM.unpack(out[1][-1])
    assert sent["type"] == ServerPacket.GET_ITEM
    assert sent["current_bullet"] == 5
    assert ItemActions(state, 0, get_item(Item.SNOW, 7)).get_item() is False
    assert state.clients[0].snowball_count == 5


def test_snowdrift_capped_at_max(game):
    state, _ = game
    state.clients[0].snowball_count = 8
    ItemActions(state, 0, get_item(Item.SNOW, 1)).get_item()
    assert state.clients[0].snowball_count == state.clients[0].max_snowball


def test_icedrift_adds_to_iceballs(game):
    state, out = game
    ItemActions(state, 0, get_item(Item.ICE, 2)).get_item()
    assert state.clients[0].iceball_count == 5
    assert GET_ITEM.unpack(out[2][-1])["current_bullet"] == 5


def test_bag_raises_capacity(game):
    state, out = game
    assert ItemActions(state, 0, get_item(Item.BAG, 3)).get_item() is True
    cl = state.clients[0]
    assert (cl.max_snowball, cl.max_iceball, cl.max_match) == (15, 15, 3)
    assert cl.has_bag
    assert all(len(box) == 1 for box in out.values())


def test_umbrella_only_once(game):
    state, out = game
    assert ItemActions(state, 0, get_item(Item.UMBRELLA, 4)).get_item() is True
    assert state.clients[0].has_umbrella
    assert ItemActions(state, 0, get_item(Item.UMBRELLA, 5)).get_item() is False
    assert len(out[1]) == 1


def test_jetski_skips_sender(game):
    state, out = game
    ItemActions(state, 0, get_item(Item.JETSKI)).get_item()
    assert out[0] == []
    assert len(out[1]) == 1 and len(out[2]) == 1


def test_match_respects_maximum(game):
    state, _ = game
    for obj_id in range(4):
        ItemActions(state, 0, get_item(Item.MATCH, obj_id)).get_item()
    assert state.clients[0].match_count == state.clients[0].ORIGIN_MAX_MATCH


def test_supply_box_fills_everything(game):
    state, out = game
    ItemActions(state, 0, get_item(Item.SUPPLY_BOX, 9)).get_item()
    cl = state.clients[0]
    assert cl.snowball_count == cl.max_snowball
    assert cl.iceball_count == cl.max_iceball
    assert cl.match_count == cl.max_match
    assert GET_ITEM.unpack(out[1][-1])["current_bullet"] == cl.max_iceball


def test_umbrella_use_needs_umbrella(game):
    state, out = game
    data = UMB.pack(ClientPacket.UMB, s_id=0, end=True)
    assert ItemActions(state, 0, data).use_umbrella() is False
    assert out[1] == []
    state.clients[0].has_umbrella = True
    assert ItemActions(state, 0, data).use_umbrella() is True
    sent = UMB.unpack(out[1][-1])
    assert sent["type"] == ServerPacket.UMB and sent["end"] is True


def test_open_box_relayed_to_others(game):
    state, out = game
    data = OPEN_BOX.pack(ClientPacket.OPEN_BOX, open_obj_id=12)
    assert ItemActions(state, 0, data).item_box(ClientPacket.OPEN_BOX) is True
    assert out[0] == []
    assert OPEN_BOX.unpack(out[1][0])["open_obj_id"] == 12
    assert packet_type(out[1][0]) == ServerPacket.OPEN_BOX


def test_item_box_refused_for_snowman(game):
    state, out = game
    state.clients[0].is_snowman = True
    data = PUT_OBJECT.pack(ClientPacket.PUT_OBJECT, x=1.0)
    assert ItemActions(state, 0, data).item_box(ClientPacket.PUT_OBJECT) is False
    assert out[1] == []


def test_cheat_hp_up_is_capped(game):
    state, out = game
    state.clients[0].hp = 380
    ItemActions(state, 0, CHEAT.pack(ClientPacket.CHAT, cheat_type=CheatType.HP_UP)).cheat()
    assert state.clients[0].hp == 390
    assert HP_CHANGE.unpack(out[0][-1])["hp"] == 390


def test_cheat_hp_down_schedules_bonfire_heal(game):
    state, _ = game
    actions = ItemActions(
        state, 0, CHEAT.pack(ClientPacket.CHAT, cheat_type=CheatType.HP_DOWN), clock=lambda: 100.0
    )
    actions.cheat()
    assert state.clients[0].hp == 360
    event = state.timer_queue.try_pop()
    assert event.order == EventType.BONFIRE
    assert event.this_id == 0 and event.start_time > 100.0


def test_cheat_hp_down_turns_snowman_and_ends_game(game):
    state, out = game
    state.clients[0].hp = 290
    state.clients[2].is_snowman = True
    ItemActions(state, 0, CHEAT.pack(ClientPacket.CHAT, cheat_type=CheatType.HP_DOWN)).cheat()
    assert state.clients[0].is_snowman
    assert state.clients[0].hp == 270
    status = [STATUS_CHANGE.unpack(p) for p in out[1] if packet_type(p) == ServerPacket.STATUS_CHANGE]
    assert status[0]["s_id"] == 0
    ends = [GAME_END.unpack(p) for p in out[2] if packet_type(p) == ServerPacket.END]
    assert ends[0]["s_id"] == 1


def test_cheat_snow_plus_broadcasts(game):
    state, out = game
    ItemActions(state, 0, CHEAT.pack(ClientPacket.CHAT, cheat_type=CheatType.SNOW_PLUS)).cheat()
    sent = GET_ITEM.unpack(out[2][-1])
    assert sent["item_type"] == Item.SNOW
    assert sent["destroy_obj_id"] == -1
    assert sent["current_bullet"] == state.clients[0].snowball_count


def test_throw_spends_snowball_and_relays(game):
    state, out = game
    state.clients[0].snowball_count = 3
    data = THROW_SNOW.pack(ClientPacket.THROW_SNOW, s_id=0, bullet=BulletType.SNOWBALL, speed=2.5)
    ItemActions(state, 0, data).snow(SnowAction.CREATE)
    assert state.clients[0].snowball_count == 2
    sent = THROW_SNOW.unpack(out[1][-1])
    assert sent["type"] == ServerPacket.THROW_SNOW and sent["speed"] == 2.5


def test_throw_without_ammo_keeps_zero(game):
    state, out = game
    data = THROW_SNOW.pack(ClientPacket.THROW_SNOW, bullet=BulletType.ICEBALL)
    ItemActions(state, 0, data).snow(SnowAction.CREATE)
    assert state.clients[0].iceball_count == 0
    assert len(out[1]) == 1


def test_cancel_snow_relayed(game):
    state, out = game
    data = CANCEL_SNOW.pack(ClientPacket.CANCEL_SNOW, s_id=0, bullet=BulletType.ICEBALL)
    ItemActions(state, 0, data).snow(SnowAction.DESTROY)
    sent = CANCEL_SNOW.unpack(out[0][-1])
    assert sent["type"] == ServerPacket.CANCEL_SNOW and sent["bullet"] == BulletType.ICEBALL


def test_freeze(game):
    state, out = game
    data = FREEZE.pack(ClientPacket.FREEZE, s_id=2, body_part=3)
    assert ItemActions(state, 0, data).freeze() is True
    assert FREEZE.unpack(out[1][-1])["body_part"] == 3
    state.clients[0].is_snowman = True
    assert ItemActions(state, 0, data).freeze() is False


def test_gun_fire_needs_snowballs(game):
    state, out = game
    state.clients[0].snowball_count = 3
    assert ItemActions(state, 0, FIRE.pack(ClientPacket.GUNFIRE)).gun_fire() is False
    assert out[1] == []


def test_gun_fire_spends_and_sends_permutations(game):
    state, out = game
    state.clients[0].snowball_count = 10
    actions = ItemActions(state, 0, FIRE.pack(ClientPacket.GUNFIRE, s_id=0), rng=random.Random(1))
    assert actions.gun_fire() is True
    assert state.clients[0].snowball_count == 5
    for box in out.values():
        sent = FIRE.unpack(box[-1])
        assert sent["type"] == ServerPacket.GUNFIRE
        assert sorted(sent["rand_int"]) == list(range(MAX_BULLET_RANG))


def test_random_bullet_order_is_permutation(game):
    state, _ = game
    order = ItemActions(state, 0, b"", rng=random.Random(5)).random_bullet_order()
    assert sorted(order) == list(range(MAX_BULLET_RANG))