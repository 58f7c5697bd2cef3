"""
Shared builders for records, ship lists and game directories.
"""

import io

import pytest

from engine.check.checker import Checker
from engine.gamefiles import Specifications, write_unit_files, write_specifications
from engine.structures import (
    NUM_HULL_TYPES, NUM_ENGINE_TYPES, NUM_BEAM_TYPES, NUM_TORPEDO_TYPES, NUM_PLANETS,
    NUM_PLAYERS, NUM_HULLS_PER_PLAYER,
    Ship, Planet, Base, Gen, HullSpec, EngineSpec, BeamSpec, TorpedoSpec, PlanetXY,
    byte_sum,
)


PLAYER = 3
TIMESTAMP = b"03-15-202412:00:00"
TURN_NUMBER = 17


def make_record(record_class, **fields):
    record = record_class()
    for name, value in fields.items():
        setattr(record, name, value)
    return record


def planet_position(planet_id):
    return 1000 + 10*planet_id, 1500


def make_ship(ship_id, owner=PLAYER, at_planet=None, **fields):
    """A plain freighter; at_planet puts it in orbit of that planet."""
    x, y = planet_position(at_planet) if at_planet else (2500, 2500 + ship_id)
    values = dict(ship_id=ship_id, owner=owner, x=x, y=y, engine_type=1, hull_type=1, crew=10)
    values.update(fields)
    return make_record(Ship, **values)


def make_planet(planet_id, owner=PLAYER, **fields):
    values = dict(planet_id=planet_id, owner=owner, colonists=1000, temperature_code=50)
    values.update(fields)
    return make_record(Planet, **values)


def make_base(base_id, owner=PLAYER, **fields):
    values = dict(base_id=base_id, owner=owner, tech_levels=[1, 1, 1, 1])
    values.update(fields)
    return make_record(Base, **values)


def make_gen(player=PLAYER, turn_number=TURN_NUMBER, **fields):
    values = dict(timestamp=TIMESTAMP, player_id=player, turn_number=turn_number,
                  timestamp_checksum=byte_sum(TIMESTAMP),
                  password=b'SIGNATURE1SIGNATURE2')
    values.update(fields)
    return make_record(Gen, **values)


def make_specs():
    """
    A small but valid ship list. Component n has tech level n and costs
    n mc; every hull holds 100 cargo and costs 10 T and 50 mc.
    """
    specs = Specifications()
    specs.hulls = [make_record(HullSpec, tritanium=10, max_fuel=100, max_crew=10, num_engines=1,
                               tech_level=1, max_cargo=100, max_beams=4, max_launchers=2, money=50)
                   for _ in range(NUM_HULL_TYPES)]
    specs.engines = [make_record(EngineSpec, cost=[i, 1, 1, 1], tech_level=i)
                     for i in range(1, NUM_ENGINE_TYPES + 1)]
    specs.beams = [make_record(BeamSpec, cost=[i, 1, 0, 0], tech_level=i)
                   for i in range(1, NUM_BEAM_TYPES + 1)]
    specs.torpedoes = [make_record(TorpedoSpec, torpedo_cost=i, launcher_cost=[i, 1, 1, 0], tech_level=i)
                       for i in range(1, NUM_TORPEDO_TYPES + 1)]
    # Every race can build hulls 1..5 from its first five slots
    specs.truehull = [[slot if slot <= 5 else 0 for slot in range(1, NUM_HULLS_PER_PLAYER + 1)]
                      for _ in range(NUM_PLAYERS)]
    specs.planet_positions = [make_record(PlanetXY, x=planet_position(i)[0], y=planet_position(i)[1])
                              for i in range(1, NUM_PLANETS + 1)]
    return specs


def write_game(game_dir, ships=(), planets=(), bases=(), gen=None, specs=None, player=PLAYER):
    """
    Write a game directory. ships, planets and bases are lists of
    (dat, dis) record pairs.
    """
    gen = gen or make_gen(player)
    (game_dir / f"gen{player}.dat").write_bytes(gen.to_bytes())
    for prefix, units in (('ship', ships), ('pdata', planets), ('bdata', bases)):
        write_unit_files(game_dir, prefix, player,
                         [dat for dat, _ in units], [dis for _, dis in units], gen)
    write_specifications(game_dir, specs or make_specs())
    return game_dir


def unchanged(record):
    """A (dat, dis) pair for a unit the player did not touch."""
    return record.copy(), record.copy()


def run_checker(game_dir, config=None, player=PLAYER):
    """Run the checker with captured output; returns the Checker."""
    checker = Checker(game_dir, game_dir, player, config=config,
                      output=io.StringIO(), error=io.StringIO())
    checker.run()
    return checker


@pytest.fixture
def specs():
    return make_specs()


@pytest.fixture
def game_dir(tmp_path):
    path = tmp_path / "game"
    path.mkdir()
    return path
