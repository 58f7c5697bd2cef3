import struct

import pytest

from engine import commands
from engine.errors import UnitReferenceError
from engine.structures import Ship, Planet, Base
from engine.turn_processor import TurnProcessor
from engine.turnfile import TurnFile

from conftest import PLAYER, TIMESTAMP, make_ship, make_planet, make_base


class RecordingProcessor(TurnProcessor):
    """Keeps units in dicts and records every hook call."""

    def __init__(self, ships=None, planets=None, bases=None):
        self.ships = ships or {}
        self.planets = planets or {}
        self.bases = bases or {}
        self.invalid = []
        self.stores = []
        self.messages = []
        self.passwords = []
        self.alliances = []

    def handle_invalid_command(self, code):
        self.invalid.append(code)

    def _validate(self, units, label, unit_id):
        if unit_id not in units:
            raise UnitReferenceError('<test>', f"unknown {label} {unit_id}")

    def validate_ship(self, ship_id):
        self._validate(self.ships, 'ship', ship_id)

    def validate_planet(self, planet_id):
        self._validate(self.planets, 'planet', planet_id)

    def validate_base(self, base_id):
        self._validate(self.bases, 'base', base_id)

    def get_ship_data(self, ship_id):
        return self.ships[ship_id].copy()

    def get_planet_data(self, planet_id):
        return self.planets[planet_id].copy()

    def get_base_data(self, base_id):
        return self.bases.get(base_id)

    def store_ship_data(self, ship_id, ship):
        self.stores.append(('ship', ship_id))
        self.ships[ship_id] = ship

    def store_planet_data(self, planet_id, planet):
        self.stores.append(('planet', planet_id))
        self.planets[planet_id] = planet

    def store_base_data(self, base_id, base):
        self.stores.append(('base', base_id))
        self.bases[base_id] = base

    def add_message(self, receiver, text):
        self.messages.append((receiver, text))

    def add_new_password(self, password):
        self.passwords.append(password)

    def add_alliance_command(self, text):
        self.alliances.append(text)


def word(value):
    return struct.pack('<h', value)


class TestApplying:

    def test_ship_commands_are_coalesced(self):
        processor = RecordingProcessor(ships={5: make_ship(5)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_SPEED, 5, word(8))
        turn.add_command(commands.SHIP_CHANGE_WAYPOINT, 5, struct.pack('<hh', 10, -20))
        turn.add_command(commands.SHIP_CHANGE_NAME, 5, b'Enterprise'.ljust(20, b' '))

        processor.handle_turn_file(turn)

        assert processor.stores == [('ship', 5)]
        ship = processor.ships[5]
        assert ship.warp_factor == 8
        assert (ship.waypoint_dx, ship.waypoint_dy) == (10, -20)
        assert ship.name.rstrip() == b'Enterprise'

    def test_coalesced_equals_single_steps(self):
        original = make_planet(12, num_mines=5, supplies=100)
        steps = [
            (commands.PLANET_CHANGE_MINES, word(9)),
            (commands.PLANET_CHANGE_SUPPLIES, struct.pack('<i', 80)),
            (commands.PLANET_CHANGE_MINES, word(11)),
            (commands.PLANET_COLONIST_TAX, word(7)),
        ]

        together = RecordingProcessor(planets={12: original.copy()})
        turn = TurnFile(PLAYER, TIMESTAMP)
        for code, data in steps:
            turn.add_command(code, 12, data)
        together.handle_turn_file(turn)

        single = RecordingProcessor(planets={12: original.copy()})
        for code, data in sorted(steps, key=lambda step: step[0]):
            turn = TurnFile(PLAYER, TIMESTAMP)
            turn.add_command(code, 12, data)
            single.handle_turn_file(turn)

        assert together.planets[12] == single.planets[12]
        assert together.planets[12].num_mines == 11
        assert together.planets[12].supplies == 80

    def test_build_base_toggles_flag(self):
        processor = RecordingProcessor(planets={12: make_planet(12)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.PLANET_BUILD_BASE, 12)
        processor.handle_turn_file(turn)
        assert processor.planets[12].build_base_flag == 1

        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.PLANET_BUILD_BASE, 12)
        processor.handle_turn_file(turn)
        assert processor.planets[12].build_base_flag == 0

    def test_blank_record_when_none_is_available(self):
        processor = RecordingProcessor(bases={4: None})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.BASE_CHANGE_MISSION, 4, word(3))
        processor.handle_turn_file(turn)
        base = processor.bases[4]
        assert isinstance(base, Base)
        assert base.mission == 3
        assert base.owner == 0

    def test_units_are_applied_in_canonical_order(self):
        processor = RecordingProcessor(ships={1: make_ship(1), 9: make_ship(9)},
                                       planets={2: make_planet(2)}, bases={2: make_base(2)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.BASE_CHANGE_DEFENSE, 2, word(10))
        turn.add_command(commands.SHIP_CHANGE_SPEED, 9, word(1))
        turn.add_command(commands.PLANET_CHANGE_DEFENSE, 2, word(10))
        turn.add_command(commands.SHIP_CHANGE_SPEED, 1, word(1))
        processor.handle_turn_file(turn)
        assert processor.stores == [('ship', 1), ('ship', 9), ('planet', 2), ('base', 2)]


class TestAlliances:

    def test_alliance_code_is_intercepted(self):
        processor = RecordingProcessor(ships={5: make_ship(5, friendly_code=b'xyz')})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.send_thost_allies("ff4EE5", 5, "abc")
        processor.handle_turn_file(turn)
        assert processor.alliances == ["ff4EE5"]
        assert processor.ships[5].friendly_code == b'abc'

    def test_last_friendly_code_is_applied(self):
        processor = RecordingProcessor(ships={5: make_ship(5)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_FC, 5, b'ff4')
        processor.handle_turn_file(turn)
        assert processor.alliances == []
        assert processor.ships[5].friendly_code == b'ff4'

    @pytest.mark.parametrize('code', [b'ff0', b'ffc', b'fF4', b'gg4'])
    def test_non_alliance_codes(self, code):
        processor = RecordingProcessor(ships={5: make_ship(5)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_FC, 5, code)
        turn.add_command(commands.SHIP_CHANGE_FC, 5, b'abc')
        processor.handle_turn_file(turn)
        assert processor.alliances == []


class TestOtherCommands:

    def test_message(self):
        processor = RecordingProcessor()
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.send_message(PLAYER, 4, "Peace?\nPlease answer")
        turn.send_message(PLAYER, 0, "To the host")
        processor.handle_turn_file(turn)
        assert processor.messages == [(4, "Peace?\nPlease answer"), (12, "To the host")]

    def test_password(self):
        processor = RecordingProcessor()
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.CHANGE_PASSWORD, 0, b'secret\x00\x00\x00\x00')
        processor.handle_turn_file(turn)
        assert processor.passwords == [b'secret\x00\x00\x00\x00']

    def test_send_back_is_ignored(self):
        processor = RecordingProcessor()
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SEND_BACK, 4, struct.pack('<HH', 1, 2) + b'xy')
        processor.handle_turn_file(turn)
        assert processor.messages == [] and processor.stores == []


class TestValidation:

    def test_unknown_code_is_reported(self):
        processor = RecordingProcessor(ships={5: make_ship(5)})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_SPEED, 5, word(3))
        turn.add_command(99, 5)
        processor.handle_turn_file(turn)
        assert processor.invalid == [99]
        assert processor.ships[5].warp_factor == 3

    def test_foreign_unit_aborts_before_anything_is_applied(self):
        processor = RecordingProcessor(ships={5: make_ship(5)}, planets={})
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_SPEED, 5, word(3))
        turn.add_command(commands.PLANET_CHANGE_MINES, 77, word(3))
        with pytest.raises(UnitReferenceError):
            processor.handle_turn_file(turn)
        assert processor.stores == []
        assert processor.ships[5].warp_factor == 0
