"""
VGAP Turn Toolkit - Maketurn
Generates the players' turn files from the game directory.

The dis files hold the units as the host sent them, the dat files as the
player left them. Every difference becomes a turn command.
"""

from pathlib import Path

from engine import commands
from engine.errors import TurnError
from engine.fileset import FileSet
from engine.gamefiles import load_gen, load_unit_files
from engine.registration import RegistrationKey

# Command messages are packed into messages of at most this many characters
MAX_COMMAND_MESSAGE = 500

NEW_PASSWORD_FLAG = 13


def pack_command_messages(lines, limit=MAX_COMMAND_MESSAGE):
    """Join command lines into message texts of at most `limit` characters."""
    messages = []
    accum = ''
    for line in lines:
        if not line or line.startswith('$'):
            continue
        if accum and len(accum) + len(line) > limit:
            messages.append(accum)
            accum = ''
        accum += line + '\n'
    if accum:
        messages.append(accum)
    return messages


def build_turn(fileset, game_dir, player, key, command_lines=()):
    """
    Add one player's turn to a file set.
    Raises OSError or TurnError if the player's files are unusable.
    """
    gen = load_gen(game_dir, player)
    ships = load_unit_files(game_dir, 'ship', player)
    planets = load_unit_files(game_dir, 'pdata', player)
    bases = load_unit_files(game_dir, 'bdata', player)

    if gen.player_id != player:
        raise TurnError(f"gen{player}.dat belongs to player {gen.player_id}")

    turn = fileset.create(player, gen.timestamp, gen.turn_number, key)

    for ship_id in sorted(ships.dat):
        turn.make_ship_commands(ship_id, ships.dis[ship_id], ships.dat[ship_id])
    for planet_id in sorted(planets.dat):
        turn.make_planet_commands(planet_id, planets.dis[planet_id], planets.dat[planet_id])
    for base_id in sorted(bases.dat):
        turn.make_base_commands(base_id, bases.dis[base_id], bases.dat[base_id])

    for text in pack_command_messages(command_lines):
        turn.send_message(player, player, text)

    if gen.new_password_flag == NEW_PASSWORD_FLAG:
        turn.add_command(commands.CHANGE_PASSWORD, 0, gen.new_password)

    turn.update()
    return turn, gen


def make_turn(game_dir, players, key=None, backup=True, command_lines=()):
    """
    Build and save playerN.trn for the given players.

    All turns are made in one file set, so each of them carries the
    checksums of all the others. key is a RegistrationKey (or None for an
    unregistered turn); command_lines are host commands each player sends
    to themselves.
    Returns one result dict per player; on failure it contains 'error'.
    """
    game_dir = Path(game_dir)
    if key is None:
        key = RegistrationKey()
    fileset = FileSet(game_dir)

    results = []
    for player in players:
        result = {'player': player, 'path': None, 'commands': 0, 'turn_number': None, 'error': None}
        try:
            turn, gen = build_turn(fileset, game_dir, player, key, command_lines)
        except (OSError, TurnError) as e:
            result['error'] = str(e)
            fileset.turns.pop(player, None)
        else:
            result['commands'] = turn.num_commands
            result['turn_number'] = gen.turn_number
        results.append(result)

    if fileset.turns:
        fileset.update_trailers()
        fileset.save_all(backup=backup)
        for result in results:
            if result['error'] is None:
                result['path'] = fileset.get_turn_path(result['player'])
    return results
