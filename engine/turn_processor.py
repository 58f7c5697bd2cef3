"""
VGAP Turn Toolkit - Turn Processor
Replays a turn file's commands onto unit records.

Subclasses supply the storage hooks. handle_turn_file() runs two passes:
first every command is validated through the hooks (nothing is changed),
then the commands are sorted and applied unit by unit.
"""

import re

from engine import commands
from engine.structures import Ship, Planet, Base
from engine.turnfile import decode_message_text


# THost alliance codes: ff/ee (offer) and FF/EE (accept) plus a player
ALLIANCE_CODE = re.compile(rb'^(ff|FF|ee|EE)[1-9ab]$')


class TurnProcessor:
    """
    Base class for applying turn files.

    Hooks raise to reject a turn; hook exceptions propagate out of
    handle_turn_file() unchanged. Runs applied before the failure are not
    rolled back.
    """

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def handle_invalid_command(self, code):
        raise NotImplementedError

    def validate_ship(self, ship_id):
        raise NotImplementedError

    def validate_planet(self, planet_id):
        raise NotImplementedError

    def validate_base(self, base_id):
        raise NotImplementedError

    def get_ship_data(self, ship_id):
        """Return the current Ship record, or None for a blank one."""
        raise NotImplementedError

    def get_planet_data(self, planet_id):
        raise NotImplementedError

    def get_base_data(self, base_id):
        raise NotImplementedError

    def store_ship_data(self, ship_id, ship):
        raise NotImplementedError

    def store_planet_data(self, planet_id, planet):
        raise NotImplementedError

    def store_base_data(self, base_id, base):
        raise NotImplementedError

    def add_message(self, receiver, text):
        raise NotImplementedError

    def add_new_password(self, password):
        raise NotImplementedError

    def add_alliance_command(self, text):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def handle_turn_file(self, turn):
        """Validate, sort and apply all commands of a TurnFile."""
        self._validate_commands(turn)
        turn.sort_commands()

        alliance_text = []
        index = 0
        while index < turn.num_commands:
            kind = turn.get_command_type(index)
            if kind in (commands.SHIP, commands.PLANET, commands.BASE):
                run = turn.find_command_run_length(index)
                self._apply_unit_run(turn, index, run, kind, alliance_text)
                index += run
            else:
                if kind == commands.OTHER:
                    self._apply_other(turn, index)
                index += 1

        if alliance_text:
            self.add_alliance_command(''.join(alliance_text))

    def _validate_commands(self, turn):
        validators = {
            commands.SHIP: self.validate_ship,
            commands.PLANET: self.validate_planet,
            commands.BASE: self.validate_base,
        }
        for i in range(turn.num_commands):
            kind = turn.get_command_type(i)
            if kind == commands.UNDEFINED:
                self.handle_invalid_command(turn.get_command_code(i))
            elif kind in validators:
                validators[kind](turn.get_command_id(i))

    def _apply_unit_run(self, turn, index, run, kind, alliance_text):
        unit_id = turn.get_command_id(index)
        if kind == commands.SHIP:
            record = self.get_ship_data(unit_id) or Ship()
        elif kind == commands.PLANET:
            record = self.get_planet_data(unit_id) or Planet()
        else:
            record = self.get_base_data(unit_id) or Base()

        for i in range(index, index + run):
            code = turn.get_command_code(i)
            data = turn.get_command_data(i)
            if code == commands.PLANET_BUILD_BASE:
                record.build_base_flag = 0 if record.build_base_flag else 1
                continue
            if (code == commands.SHIP_CHANGE_FC
                    and i + 1 < index + run
                    and turn.get_command_code(i + 1) == commands.SHIP_CHANGE_FC
                    and ALLIANCE_CODE.match(data)):
                alliance_text.append(data.decode('ascii'))
                continue
            offset = commands.get_record_offset(code)
            record.raw[offset:offset + len(data)] = data

        if kind == commands.SHIP:
            self.store_ship_data(unit_id, record)
        elif kind == commands.PLANET:
            self.store_planet_data(unit_id, record)
        else:
            self.store_base_data(unit_id, record)

    def _apply_other(self, turn, index):
        code = turn.get_command_code(index)
        data = turn.get_command_data(index)
        if code == commands.SEND_MESSAGE:
            # from, to, text
            receiver = int.from_bytes(data[2:4], 'little', signed=True)
            text = decode_message_text(data[4:], turn.charset)
            self.add_message(receiver, text)
        elif code == commands.CHANGE_PASSWORD:
            self.add_new_password(data)
        # SendBack is for the host only
