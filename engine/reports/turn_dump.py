"""
VGAP Turn Toolkit - Turn Dump
Human-readable listing of a turn file: header, one block per command,
trailer.

    ShipChangeSpeed                                   ; index 1, position 00000029
      Ship Id            = 7
      Speed              = 9
"""

import struct

from engine import commands
from engine.registration import decode_key_line, key_checksum, LINE_LENGTH
from engine.structures import (
    NUM_PLAYERS, MAX_TRN_ATTACHMENTS, byte_sum, unpack_string,
)
from engine.turnfile import TACCOM_FEATURE, WINPLAN_FEATURE


# Column of the '=' in assignments and of the ';' of comments
AS_INDENT = 20
COM_INDENT = 50

HEX_LINES = 16
HEX_BYTES_PER_LINE = 16

# SendBack type carrying a file
SENDBACK_FILE = 34

# DOS trailer signature -> program that wrote the turn
MAKETURN_NAMES = {
    0x32434350: "PCC2",
    0x49494343: "PCC2",
    0x21434350: "PCC",
    0x474E3243: "c2ng",
    0x2E522E53: "Stefan's Portable Maketurn",
    0x6F72656B: "k-Maketurn",
    0x6F72654B: "k-Maketurn",
    0: "Tim's Maketurn or VPmaketurn",
}

# Fields of each command: (label, format). Formats are struct codes, 's<n>'
# for strings and 'a<n>' for arrays of words.
COMMAND_FIELDS = {
    commands.SHIP_CHANGE_FC: [('FCode', 's3')],
    commands.SHIP_CHANGE_SPEED: [('Speed', 'h')],
    commands.SHIP_CHANGE_WAYPOINT: [('WaypointDX', 'h'), ('WaypointDY', 'h')],
    commands.SHIP_CHANGE_MISSION: [('Mission', 'h')],
    commands.SHIP_CHANGE_PRIMARY_ENEMY: [('Player', 'h')],
    commands.SHIP_TOW_SHIP: [('Towee Id', 'h')],
    commands.SHIP_CHANGE_NAME: [('Name', 's20')],
    commands.SHIP_BEAM_DOWN_CARGO: [('Neutronium', 'h'), ('Tritanium', 'h'), ('Duranium', 'h'),
                                    ('Molybdenum', 'h'), ('Clans', 'h'), ('Supplies', 'h'),
                                    ('Target Id', 'h')],
    commands.SHIP_INTERCEPT: [('Target Id', 'h')],
    commands.SHIP_CHANGE_NEUTRONIUM: [('Neutronium', 'h')],
    commands.SHIP_CHANGE_TRITANIUM: [('Tritanium', 'h')],
    commands.SHIP_CHANGE_DURANIUM: [('Duranium', 'h')],
    commands.SHIP_CHANGE_MOLYBDENUM: [('Molybdenum', 'h')],
    commands.SHIP_CHANGE_SUPPLIES: [('Supplies', 'h')],
    commands.SHIP_CHANGE_COLONISTS: [('Clans', 'h')],
    commands.SHIP_CHANGE_TORPEDOES: [('Ammo', 'h')],
    commands.SHIP_CHANGE_MONEY: [('Money', 'h')],

    commands.PLANET_CHANGE_FC: [('FCode', 's3')],
    commands.PLANET_CHANGE_MINES: [('Mines', 'h')],
    commands.PLANET_CHANGE_FACTORIES: [('Factories', 'h')],
    commands.PLANET_CHANGE_DEFENSE: [('Defense', 'h')],
    commands.PLANET_CHANGE_NEUTRONIUM: [('Neutronium', 'i')],
    commands.PLANET_CHANGE_TRITANIUM: [('Tritanium', 'i')],
    commands.PLANET_CHANGE_DURANIUM: [('Duranium', 'i')],
    commands.PLANET_CHANGE_MOLYBDENUM: [('Molybdenum', 'i')],
    commands.PLANET_CHANGE_COLONISTS: [('Clans', 'i')],
    commands.PLANET_CHANGE_SUPPLIES: [('Supplies', 'i')],
    commands.PLANET_CHANGE_MONEY: [('Money', 'i')],
    commands.PLANET_COLONIST_TAX: [('Tax Rate', 'h')],
    commands.PLANET_NATIVE_TAX: [('Tax Rate', 'h')],

    commands.BASE_CHANGE_DEFENSE: [('Defense', 'h')],
    commands.BASE_UPGRADE_ENGINE_TECH: [('Tech', 'h')],
    commands.BASE_UPGRADE_HULL_TECH: [('Tech', 'h')],
    commands.BASE_UPGRADE_WEAPON_TECH: [('Tech', 'h')],
    commands.BASE_UPGRADE_TORP_TECH: [('Tech', 'h')],
    commands.BASE_BUILD_ENGINES: [('Engine', 'a9')],
    commands.BASE_BUILD_HULLS: [('Hull', 'a20')],
    commands.BASE_BUILD_WEAPONS: [('Beam', 'a10')],
    commands.BASE_BUILD_LAUNCHERS: [('Launcher', 'a10')],
    commands.BASE_BUILD_TORPEDOES: [('Torp', 'a10')],
    commands.BASE_BUILD_FIGHTERS: [('Fighters', 'h')],
    commands.BASE_FIX_RECYCLE_SHIP_ID: [('Ship Id', 'h')],
    commands.BASE_CHANGE_MISSION: [('Mission', 'h')],
    commands.BASE_BUILD_SHIP: [('Hull Type', 'h'), ('Engine Type', 'h'), ('Beam Type', 'h'),
                               ('Beam Count', 'h'), ('Torp Type', 'h'), ('Torp Count', 'h'),
                               ('Unused', 'h')],
}
COMMAND_FIELDS[commands.SHIP_TRANSFER_CARGO] = COMMAND_FIELDS[commands.SHIP_BEAM_DOWN_CARGO]

SHIPYARD_ACTIONS = {0: "none", 1: "Fix", 2: "Recycle"}

UNIT_LABELS = {
    commands.SHIP: "Ship Id",
    commands.PLANET: "Planet Id",
    commands.BASE: "Base Id",
}


def quote_string(value):
    """Quote a string with C-style escapes."""
    result = ['"']
    for ch in value:
        if ch == '\n':
            result.append('\\n')
        elif ch == '\r':
            result.append('\\r')
        elif ch in '\\"':
            result.append('\\' + ch)
        elif ord(ch) < 32:
            result.append('\\%03o' % ord(ch))
        else:
            result.append(ch)
    result.append('"')
    return ''.join(result)


def format_hex(value):
    return '%08X' % value


class CommandReader:
    """Sequential reader over a command's data. Reading past the end yields 0."""

    def __init__(self, data):
        self.data = bytes(data)
        self.pos = 0

    def get(self, fmt):
        size = struct.calcsize('<' + fmt)
        chunk = self.get_blob(size)
        if len(chunk) < size:
            self.pos = len(self.data)
            return 0
        return struct.unpack('<' + fmt, chunk)[0]

    def get_blob(self, size):
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk

    def get_string(self, size, charset):
        return unpack_string(self.get_blob(size), charset)


class TurnDumper:
    """Formats a TurnFile into report lines."""

    def __init__(self, show_comments=True):
        self.show_comments = show_comments
        self.lines = []

    def line(self, name, value='', comment=''):
        output = name
        if value:
            output = output.ljust(AS_INDENT) + ' = ' + value
        if comment and self.show_comments:
            if len(output) >= COM_INDENT - 2:
                self.lines.append(output)
                output = ''
            output = output.ljust(COM_INDENT) + '; ' + comment
        self.lines.append(output)

    def value(self, name, value, comment=''):
        if isinstance(value, str):
            self.line(name, quote_string(value), comment)
        else:
            self.line(name, str(value), comment)

    # ------------------------------------------------------------------
    # Header
    # ------------------------------------------------------------------

    def show_header(self, turn):
        if TACCOM_FEATURE in turn.features:
            self.lines.append("; Taccom file format")
        if WINPLAN_FEATURE in turn.features:
            self.lines.append(f"; Winplan trailer present, sub-version {turn.version}")
        if TACCOM_FEATURE in turn.features:
            self.show_taccom(turn)
        self.lines.append('')
        self.value("Player", turn.player)
        self.value("Commands", turn.num_commands)
        self.value("Timestamp", turn.timestamp.decode('ascii', errors='replace'))

        stored = turn.turn_header.time_checksum
        actual = byte_sum(turn.turn_header.timestamp)
        comment = "okay" if stored == actual else f"WRONG, should be {actual}"
        self.value("Time checksum", stored, comment)

    def show_taccom(self, turn):
        header = turn.taccom_header
        turn_line = f";   turn data, {header.turn_size} bytes, position {header.turn_address}"
        self.lines.append(";")
        self.lines.append("; Taccom-format Turn File Directory:")
        shown = False
        for i in range(MAX_TRN_ATTACHMENTS):
            if turn.turn_placement == i:
                self.lines.append(turn_line)
                shown = True
            attachment = header.get_attachment(i)
            name = unpack_string(attachment.name, turn.charset)
            if name:
                self.lines.append(f';   file "{name}", {attachment.length} bytes, position {attachment.address}')
        if not shown:
            self.lines.append(turn_line)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def show_command(self, turn, index):
        code = turn.get_command_code(index)
        position = turn.get_command_position(index)
        if code is None:
            return
        where = f"index {index + 1}, position {format_hex(position)}"

        name = turn.get_command_name(index)
        if name is None:
            self.value("Command", code, where)
            self.lines.append("; Unknown command")
            return

        self.line(name, '', where)
        kind = turn.get_command_type(index)
        unit_id = turn.get_command_id(index)
        if kind in UNIT_LABELS and unit_id is not None:
            self.value("  " + UNIT_LABELS[kind], unit_id)

        reader = CommandReader(turn.get_command_data(index))
        if code in COMMAND_FIELDS:
            for label, fmt in COMMAND_FIELDS[code]:
                if fmt.startswith('s'):
                    self.value("  " + label, reader.get_string(int(fmt[1:]), turn.charset))
                elif fmt.startswith('a'):
                    for i in range(int(fmt[1:])):
                        self.value(f"  {label}{i + 1}", reader.get('h'))
                else:
                    self.value("  " + label, reader.get(fmt))
        elif code == commands.PLANET_BUILD_BASE:
            self.lines.append("; no data for this command")
        elif code == commands.BASE_FIX_RECYCLE_SHIP:
            action = reader.get('h')
            self.value("  Action", action, SHIPYARD_ACTIONS.get(action, "INVALID"))
        elif code == commands.SEND_MESSAGE:
            self.value("  From", reader.get('h'))
            self.value("  To", reader.get('h'))
            if unit_id is not None and unit_id > 0:
                self.lines.append("  Text =")
                self.show_message(turn, reader, unit_id)
            else:
                self.value("  Text", "", "missing/empty")
        elif code == commands.CHANGE_PASSWORD:
            self.lines.append("; Intentionally not decoded.")
        elif code == commands.SEND_BACK and unit_id is not None:
            kind = reader.get('H')
            size = reader.get('H')
            self.value("  Receiver", unit_id)
            self.value("  Type", kind)
            self.value("  Size", size)
            if kind == SENDBACK_FILE:
                self.value("    File Name", reader.get_string(12, turn.charset))
                self.value("    File Size", size - 13)
                self.value("    Flags", reader.get('B'))
                self.show_hex(reader, size - 13)
            else:
                self.show_hex(reader, size)

        self.show_position_check(turn, index, position)

    def show_message(self, turn, reader, size):
        raw = bytes((b - 13) & 0xFF for b in reader.get_blob(size))
        text = raw.decode(turn.charset, errors='replace')
        parts = text.split('\r')
        if parts and parts[-1] == '':
            parts.pop()
        for part in parts:
            self.lines.append("    " + quote_string(part))

    def show_hex(self, reader, size):
        data = reader.get_blob(max(size, 0))
        for line_nr in range(HEX_LINES):
            chunk = data[line_nr * HEX_BYTES_PER_LINE:(line_nr + 1) * HEX_BYTES_PER_LINE]
            if not chunk:
                break
            hex_text = ''
            char_text = ''
            for i in range(HEX_BYTES_PER_LINE):
                if i < len(chunk):
                    hex_text += '%02X' % chunk[i]
                    char_text += chr(chunk[i]) if 32 <= chunk[i] < 127 else '.'
                else:
                    hex_text += '  '
                hex_text += ' '
                if i == 7:
                    hex_text += ' '
            self.lines.append(f"  {line_nr * HEX_BYTES_PER_LINE:08X}: {hex_text}{char_text}")
        if len(data) > HEX_LINES * HEX_BYTES_PER_LINE:
            self.lines.append("; ...rest omitted")

    def show_position_check(self, turn, index, position):
        next_position = turn.get_command_position(index + 1)
        length = turn.get_command_length(index)
        if next_position is None or length is None:
            return
        length += 4
        end = position + length
        if end == next_position:
            return
        self.lines.append(f"; WARNING: next command not at expected position {format_hex(end)}")
        if end < next_position:
            self.lines.append(f"; there's a {next_position - end} bytes gap")
        elif end - next_position < length:
            self.lines.append(f"; there's a {end - next_position} bytes overlap between commands")
        else:
            self.lines.append("; this TRN is screwed.")

    # ------------------------------------------------------------------
    # Trailer
    # ------------------------------------------------------------------

    def show_trailer(self, turn, verify_checksum=True):
        if WINPLAN_FEATURE in turn.features:
            self.lines.append("; Version 3.5 file format (Winplan)")
            self.lines.append(f"; Sub-version {turn.version}")
            trailer = turn.windows_trailer

            turn_number = turn.try_get_turn_number()
            turn_comment = f"   Turn = {turn_number}" if turn_number else "   Unknown turn?"
            vph_a, vph_b = trailer.vph_key
            self.line("VPH A", format_hex(vph_a), f"-> VPH = {vph_a ^ vph_b:08X}")
            self.line("VPH B", format_hex(vph_b), turn_comment)
            for field in ('regstr1', 'regstr2'):
                pair = getattr(trailer, field)
                plain = bytes(a ^ b for a, b in zip(pair[:25], pair[25:]))
                self.value(field.replace('regstr', 'RegStr'), unpack_string(plain, turn.charset))
            self.value("RegStr3", unpack_string(trailer.regstr3, turn.charset), "Player Name")
            self.value("RegStr4", unpack_string(trailer.regstr4, turn.charset), "Player Address")
            self.lines.append('')
            self.lines.append("; DOS Trailer follows:")
        else:
            self.lines.append("; Version 3.0 file format (DOS)")

        trailer = turn.dos_trailer
        stored = trailer.checksum
        if verify_checksum:
            computed = turn.compute_turn_checksum()
            comment = "okay" if computed == stored else f"ERROR: should be {computed:08X}"
        else:
            comment = ''
        self.line("Checksum", format_hex(stored), comment)

        signature = trailer.signature
        self.line("Unused", format_hex(signature), MAKETURN_NAMES.get(signature, "Tim's Maketurn"))

        key = trailer.registration_key
        line1, error1 = decode_key_line(key[:LINE_LENGTH], turn.charset)
        line2, error2 = decode_key_line(key[LINE_LENGTH:2*LINE_LENGTH], turn.charset)
        self.value("RegStr1", line1)
        self.value("RegStr2", line2)
        expected = key_checksum(key)
        if expected == key[-1]:
            self.line("RegSum", format_hex(key[-1]), "okay")
        else:
            self.line("RegSum", format_hex(key[-1]), f"ERROR: should be {expected:08X}")
        if error1 or error2:
            self.lines.append('; WARNING: Encoding error (indicated with "?")')

        self.lines.append('')
        self.lines.append("PlayerLog")
        for i, secret in enumerate(trailer.player_secret[:NUM_PLAYERS]):
            self.line(f"  Player{i + 1}", format_hex(secret))


def dump_turn(turn, show_header=True, show_trailer=True, show_comments=True,
              verify_checksum=True, indexes=None):
    """
    Produce the listing of a turn file as a list of lines.
    indexes restricts the commands shown (0-based); None shows all.
    """
    dumper = TurnDumper(show_comments)
    need_blank = False
    if show_header:
        dumper.show_header(turn)
        need_blank = True

    for index in range(turn.num_commands):
        if indexes is not None and index not in indexes:
            continue
        if need_blank:
            dumper.lines.append('')
        need_blank = True
        dumper.show_command(turn, index)

    if show_trailer:
        if need_blank:
            dumper.lines.append('')
        dumper.show_trailer(turn, verify_checksum)
    return dumper.lines
