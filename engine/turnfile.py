"""
VGAP Turn Toolkit - Turn File Container
Parses, edits, rebuilds and writes VGA Planets 3 turn files (player*.trn).

The file image is kept as one byte buffer plus a parallel list of command
positions into that buffer. Edits only append to the buffer or patch it in
place, so command indexes stay stable until update() rebuilds the image.
"""

import struct
from pathlib import Path

from engine import commands
from engine.errors import TurnError, FormatError, FileTooShortError
from engine.registration import RandomNumberGenerator
from engine.structures import (
    MAX_TRN_ATTACHMENTS, DEFAULT_CHARSET,
    TurnHeader, TurnDosTrailer, TurnWindowsTrailer, TaccomHeader, TaccomAttachment,
    byte_sum, make_timestamp, pack_string, unpack_string,
)


CURRENT_VERSION = 1
MAX_COMMANDS = 1000000

TACCOM_MAGIC = b"NCC1701AD9"
V35_MAGIC = b"VER3.5"
DOS_SIGNATURE = 0x474E3243

WINPLAN_FEATURE = 'winplan'
TACCOM_FEATURE = 'taccom'

# Turn-number magic numbers for the Windows trailer, indexed by turn number
MAGIC_NUMBERS = (
    1585242373,
    458484639, 1702713875, 2131768570, 943874411, 1531045611,
    622829488, 660770929, 473301358, 1868910709, 439267666, 1259778247,
    187160419, 205520992, 1162432602, 2048525217, 663275107, 1945076761,
    1912495862, 372583676, 2110506768, 972564220, 1627953855, 1696231547,
    1825551059, 690525357, 1425805634, 1273009202, 1643106825, 1033503714,
    1773067018, 1444056607, 841306782, 1311137219, 472310692, 1658228604,
    214806212, 1638334074, 870981249, 1438230436, 1722981495, 383237037,
    1014208183, 1950729749, 1381216466, 1149684732, 1475271197, 990158844,
    659846975, 131158828, 1269952134, 1929873739, 149943298, 94038386,
    1639179540, 519578396, 649680371, 2139806121, 48126387, 1820750093,
    2002158429, 834011058, 127330762, 1341047341, 45011247, 1210785240,
    102394054, 1033444233, 1452787209, 1636216880, 2001004855, 196571844,
    768753436, 1715639759, 9036553, 550413001, 1195957868, 566073290,
    1386247611, 725117880, 637842515, 782679024, 614960412, 1259473924,
    710893647, 137748852, 808495109, 1174108532, 2141228605, 1298353301,
    1989952843, 607318838, 1868217839, 2046567417, 1297732528, 886928938,
    533473933, 667670866, 1241783877, 1634258231, 1529167548, 1048674755,
    108553737, 442206379, 1427828321, 178793040, 57025576, 1886069810,
    1452681265, 392872129, 1749094387, 1931946557, 610131601, 497923660,
    800378618, 833787008, 1047995126, 867114247, 108316439, 1889137816,
    1566927898, 1606954817, 2129997452, 176508207, 1504084876, 781656333,
    1575411145, 952282888, 1920012969, 725392878, 442033280, 2055008888,
    125996860, 648896510, 1271579722, 734745843, 457213090, 101154514,
    1253209494, 649313503, 665663012, 1284757233, 526008074, 1128559135,
    708376521, 1888247159, 637430572, 1297014774, 84473586, 1938406737,
    278055502, 2082329430, 784004382, 886858342, 487519681, 979889529,
    2118032563, 376523135, 2037399162, 494383465, 1744352698, 533745717,
    752066469, 1518627158, 347571084, 1270232880, 460005993, 1754379254,
    1431354806, 103810045, 676346171, 948969734, 1270441550, 562587328,
    305781542, 48494333, 263492952, 1020466270, 190108896, 1009887493,
    1263640424, 2136294797, 951195719, 1154885409, 533815976, 707619918,
    1293089160, 1565561820, 1424862457, 2024541688, 1849356050, 804648133,
    1041775421, 1752468846, 2051572786, 749910457, 1708669854, 1592915884,
    1123095599, 1460717743, 1948843781, 1082061162, 1152635918,
    1881839283, 760734026, 1910315568, 1258782923, 2051380841, 1725205147,
    585278536, 1106219491, 444629203, 1099824661, 734821072, 2025557656,
    657473172, 255537853, 291983710, 286553905, 42517818, 670349676,
    870581336, 1127381655, 1839475352, 632654867, 547547534, 1471914002,
    1512583684, 890892484, 1857789058, 1587065657, 709203658, 1447182906,
    950862839, 1854232374, 1589606089, 18301536, 700074959, 415606342,
    1405416566, 1289157530, 1227135268, 340764183, 419122630, 1884968096,
    326246210, 540566661, 853062096, 1975701318, 1492562570, 1963382636,
    1075710563, 758982437, 2060895641, 1152739182, 1371354866, 800770398,
    1598945131, 79563287, 694771023, 1704620086, 248109047, 95128540,
    1062172273, 810095152, 2013227291, 1998220334, 1498632230, 1836447618,
    217773428, 986641406, 603013591, 1230144401, 1075426659, 1746848829,
    817629711, 186988432, 1484074762, 843442591, 776096924, 1024866700,
    2027642148, 1049701698, 247896996, 387855251, 857506062, 165410039,
    1748384075, 1958279260, 1593211160, 1998805368, 1633675306,
    2048559498, 1569149953, 1404385053, 784606841, 1589733669, 373455454,
    909199500, 1312922206, 408034973, 997233876, 963117498, 742951874,
    10752697, 574771227, 794412355, 92609016, 392712605, 964282276,
    1732686549,
)


def encode_message_text(text, charset=DEFAULT_CHARSET):
    """Encode message text the way turn files store it (CR line ends, +13)."""
    raw = text.replace('\n', '\r').encode(charset, errors='replace')
    return bytes((b + 13) & 0xFF for b in raw)


def decode_message_text(data, charset=DEFAULT_CHARSET):
    """Inverse of encode_message_text."""
    raw = bytes((b - 13) & 0xFF for b in data)
    return raw.decode(charset, errors='replace').replace('\r', '\n')


class TurnFile:
    """
    A player's turn file.

    Create an empty one with TurnFile(player, timestamp) or read one with
    TurnFile.parse() / TurnFile.load(). Mutators mark the turn dirty; call
    update() before write().
    """

    def __init__(self, player, timestamp, charset=DEFAULT_CHARSET, name='<turn>'):
        self._reset(charset, name)
        self.features.add(WINPLAN_FEATURE)
        # A new turn has no image yet.
        self.dirty = True

        self.turn_header.player_id = player
        self.turn_header.timestamp = make_timestamp(timestamp)

    def _reset(self, charset, name):
        self.charset = charset
        self.name = name
        self.turn_header = TurnHeader()
        self.taccom_header = TaccomHeader()
        self.dos_trailer = TurnDosTrailer()
        self.windows_trailer = TurnWindowsTrailer()
        self.data = bytearray()
        self.offsets = []
        self.version = CURRENT_VERSION
        self.features = set()
        self.turn_placement = 0
        self.dirty = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, data, full_parse=True, charset=DEFAULT_CHARSET, name='<turn>'):
        """
        Build a TurnFile from a file image.

        With full_parse=False only the header and trailers are read; the
        turn then has no commands and is dirty.
        """
        turn = cls.__new__(cls)
        turn._reset(charset, name)

        data = bytes(data)
        if full_parse:
            turn._init_full(data)
        else:
            turn._init_headers(data)
        return turn

    @classmethod
    def load(cls, filepath, full_parse=True, charset=DEFAULT_CHARSET):
        path = Path(filepath)
        return cls.parse(path.read_bytes(), full_parse=full_parse, charset=charset, name=str(path))

    def _init_full(self, data):
        self.data = bytearray(data)
        if len(data) > TaccomHeader.SIZE and data.startswith(TACCOM_MAGIC):
            self.taccom_header = TaccomHeader(data)
            self.features.add(TACCOM_FEATURE)
            self._parse_turn(self.taccom_header.turn_address - 1, self.taccom_header.turn_size)
            for i in range(MAX_TRN_ATTACHMENTS):
                if self.taccom_header.is_used(i):
                    attachment = self.taccom_header.get_attachment(i)
                    if self.taccom_header.turn_address > attachment.address:
                        self.turn_placement = i + 1
                    self._check_range(attachment.address - 1, attachment.length)
        else:
            self._parse_turn(0, len(data))

    def _init_headers(self, data):
        if len(data) >= TaccomHeader.SIZE and data.startswith(TACCOM_MAGIC):
            header = TaccomHeader(data)
            offset, length = header.turn_address - 1, header.turn_size
        else:
            offset, length = 0, len(data)

        if (offset < 0 or offset >= len(data) or length > len(data) - offset
                or length < TurnHeader.SIZE + TurnDosTrailer.SIZE):
            raise FileTooShortError(self.name)

        self.turn_header = TurnHeader(data[offset:])
        self.dos_trailer = TurnDosTrailer(data[offset + length - TurnDosTrailer.SIZE:])
        if length > TurnHeader.SIZE + TurnDosTrailer.SIZE + TurnWindowsTrailer.SIZE:
            self._read_windows_trailer(data, offset + length - TurnDosTrailer.SIZE - TurnWindowsTrailer.SIZE)
        if WINPLAN_FEATURE not in self.features:
            self.windows_trailer = TurnWindowsTrailer()
        self.dirty = True

    def _check_range(self, offset, length):
        if offset < 0 or length < 0 or offset > len(self.data) or length > len(self.data) - offset:
            raise FormatError(self.name, "Invalid file format (bad pointer)")

    def _parse_turn(self, offset, length):
        self._check_range(offset, length)

        if length < TurnHeader.SIZE + TurnDosTrailer.SIZE:
            raise FileTooShortError(self.name)
        self.turn_header = TurnHeader(self.data[offset:])
        count = self.turn_header.num_commands
        if count < 0 or count > MAX_COMMANDS:
            raise FormatError(self.name, "Invalid file format (invalid command count)")
        if length < TurnHeader.SIZE + (count != 0) + 4*count + TurnDosTrailer.SIZE:
            raise FileTooShortError(self.name)

        # Offset table follows the header and a null byte
        table = offset + TurnHeader.SIZE + 1
        self._check_range(table, 4*count)
        for i in range(count):
            entry = struct.unpack_from('<i', self.data, table + 4*i)[0]
            self.offsets.append(offset + entry - 1)

        for i, position in enumerate(self.offsets):
            self._check_range(position, 4)
            if self.get_command_code(i) == commands.SEND_BACK:
                self._check_range(position, 8)
            command_length = self.get_command_length(i)
            if command_length is not None:
                self._check_range(position, command_length + 4)

        if length >= TurnDosTrailer.SIZE + TurnWindowsTrailer.SIZE + TurnHeader.SIZE:
            self._read_windows_trailer(self.data, offset + length - TurnDosTrailer.SIZE - TurnWindowsTrailer.SIZE)
        if WINPLAN_FEATURE not in self.features:
            self.windows_trailer = TurnWindowsTrailer()

        self.dos_trailer = TurnDosTrailer(self.data[offset + length - TurnDosTrailer.SIZE:])

    def _read_windows_trailer(self, data, position):
        self.windows_trailer = TurnWindowsTrailer(data[position:])
        magic = self.windows_trailer.magic
        if magic.startswith(V35_MAGIC):
            self.features.add(WINPLAN_FEATURE)
            digits = magic[6:8]
            if all(ord('0') <= ch <= ord('9') for ch in digits):
                self.version = 10*(digits[0] - ord('0')) + (digits[1] - ord('0'))

    # ------------------------------------------------------------------
    # Header access
    # ------------------------------------------------------------------

    @property
    def player(self):
        return self.turn_header.player_id

    @property
    def timestamp(self):
        return self.turn_header.timestamp

    @property
    def num_commands(self):
        return len(self.offsets)

    def set_timestamp(self, timestamp):
        self.turn_header.timestamp = make_timestamp(timestamp)
        self.dirty = True

    def set_version(self, version):
        if not 0 <= version <= 99:
            raise ValueError(f"Version must be 0..99, got {version}")
        self.version = version
        self.dirty = True

    def set_features(self, features):
        """Replace the feature set. A dropped feature loses its structure."""
        features = set(features)
        if features != self.features:
            self.dirty = True
            self.features = features
            if TACCOM_FEATURE not in features:
                self.taccom_header = TaccomHeader()
            if WINPLAN_FEATURE not in features:
                self.windows_trailer = TurnWindowsTrailer()

    # ------------------------------------------------------------------
    # Command access
    # ------------------------------------------------------------------

    def _read_int16(self, position):
        if position < 0 or position + 2 > len(self.data):
            return None
        return struct.unpack_from('<h', self.data, position)[0]

    def get_command_position(self, index):
        """0-based position of a command in the file image, or None."""
        if 0 <= index < len(self.offsets):
            return self.offsets[index]
        return None

    def get_command_code(self, index):
        position = self.get_command_position(index)
        if position is None:
            return None
        return self._read_int16(position)

    def get_command_id(self, index):
        position = self.get_command_position(index)
        if position is None:
            return None
        return self._read_int16(position + 2)

    def get_command_type(self, index):
        code = self.get_command_code(index)
        if code is None:
            return None
        return commands.get_command_kind(code)

    def get_command_name(self, index):
        code = self.get_command_code(index)
        if code is None:
            return None
        return commands.get_command_name(code)

    def get_command_length(self, index):
        """
        Length of a command's data field (excluding code and id).
        Returns None when it is not known.
        """
        code = self.get_command_code(index)
        if code is None:
            return None
        if code == commands.SEND_MESSAGE:
            command_id = self.get_command_id(index)
            return None if command_id is None else command_id + 4
        if code == commands.SEND_BACK:
            size = self._read_int16(self.offsets[index] + 6)
            return None if size is None else size + 4
        definition = commands.classify(code)
        if definition.kind == commands.UNDEFINED:
            return None
        return definition.size

    def get_command_data(self, index):
        """
        Data field of a command. For commands of unknown length this is
        everything up to the end of the file image.
        """
        position = self.get_command_position(index)
        if position is None:
            return None
        length = self.get_command_length(index)
        if length is None:
            return bytes(self.data[position + 4:])
        return bytes(self.data[position + 4:position + 4 + length])

    def find_command_run_length(self, index):
        """Number of commands starting at index that address the same unit."""
        start_type = self.get_command_type(index)
        start_id = self.get_command_id(index)
        if start_type is None or start_id is None:
            return 0
        run = 1
        while (self.get_command_type(index + run) == start_type
               and self.get_command_id(index + run) == start_id):
            run += 1
        return run

    # ------------------------------------------------------------------
    # Command creation
    # ------------------------------------------------------------------

    def add_command(self, code, unit_id, data=b''):
        self.offsets.append(len(self.data))
        self.add_data(struct.pack('<hh', code, unit_id))
        if data:
            self.add_data(data)

    def add_data(self, data):
        self.dirty = True
        self.data.extend(data)

    def delete_command(self, index):
        """Neutralize a command in place; it is dropped by the next update()."""
        position = self.get_command_position(index)
        if position is not None:
            struct.pack_into('<h', self.data, position, 0)
        self.dirty = True

    def send_message_data(self, sender, receiver, data):
        """Add a SendMessage command with already-encoded text."""
        header = struct.pack('<hh', sender, 12 if receiver == 0 else receiver)
        self.add_command(commands.SEND_MESSAGE, len(data), header)
        self.add_data(data)

    def send_message(self, sender, receiver, text):
        self.send_message_data(sender, receiver, encode_message_text(text, self.charset))

    def send_thost_allies(self, sequence, ship_id, ship_fc):
        """
        Add THost alliance codes as a chain of friendly code changes, then
        restore the ship's real friendly code.
        """
        encoded = sequence.encode(self.charset, errors='replace')
        for i in range(0, len(encoded), 3):
            chunk = encoded[i:i+3]
            self.add_command(commands.SHIP_CHANGE_FC, ship_id, chunk + bytes(3 - len(chunk)))
        fc = ship_fc.encode(self.charset, errors='replace')[:3]
        self.add_command(commands.SHIP_CHANGE_FC, ship_id, fc + bytes(3 - len(fc)))

    def _make_commands(self, unit_id, first, last, old, new):
        for code in range(first, last + 1):
            definition = commands.classify(code)
            start, end = definition.offset, definition.offset + definition.size
            changed = old.raw[start:end] != new.raw[start:end]
            if changed or (code == commands.BASE_BUILD_SHIP and new.raw[start:start+2] != b'\x00\x00'):
                self.add_command(code, unit_id, bytes(new.raw[start:end]))

    def make_ship_commands(self, ship_id, old_ship, new_ship):
        self._make_commands(ship_id, commands.SHIP_FIRST, commands.SHIP_LAST, old_ship, new_ship)

    def make_planet_commands(self, planet_id, old_planet, new_planet):
        self._make_commands(planet_id, commands.PLANET_FIRST, commands.PLANET_LAST, old_planet, new_planet)
        if old_planet.build_base_flag != new_planet.build_base_flag:
            self.add_command(commands.PLANET_BUILD_BASE, planet_id)

    def make_base_commands(self, base_id, old_base, new_base):
        self._make_commands(base_id, commands.BASE_FIRST, commands.BASE_LAST, old_base, new_base)

    # ------------------------------------------------------------------
    # Trailers
    # ------------------------------------------------------------------

    def try_get_turn_number(self):
        """Turn number encoded in the Windows trailer, 0 if unknown."""
        if WINPLAN_FEATURE in self.features:
            vph = self.windows_trailer.vph_key
            checker = (vph[0] ^ vph[1]) & 0x7FFFFFFF
            if checker in MAGIC_NUMBERS:
                index = MAGIC_NUMBERS.index(checker)
                return index if index else len(MAGIC_NUMBERS)
        return 0

    def set_player_secret(self, secret):
        """Store the per-player checksum block of the DOS trailer."""
        self.dos_trailer.player_secret = list(secret)

    def set_registration_key(self, key, turn_number):
        rng = RandomNumberGenerator(self.player + (turn_number << 16))

        self.dos_trailer.registration_key = key.get_key()

        if WINPLAN_FEATURE in self.features:
            trailer = self.windows_trailer
            trailer.regstr3 = pack_string(key.get_line(3), 50, self.charset)
            trailer.regstr4 = pack_string(key.get_line(4), 50, self.charset)
            trailer.unused = bytes(100)
            for field, line in (('regstr1', 1), ('regstr2', 2)):
                plain = pack_string(key.get_line(line), 25, self.charset)
                pad = bytes(rng(256) for _ in range(25))
                scrambled = bytes(a ^ b for a, b in zip(plain, pad))
                setattr(trailer, field, scrambled + pad)

            random_nr = (rng() << 16) | rng()
            random_nr &= 0x7FFFFFFF
            trailer.vph_key = [MAGIC_NUMBERS[turn_number % len(MAGIC_NUMBERS)] ^ random_nr, random_nr]
        self.dirty = True

    def _turn_area(self):
        """(start, length) of the turn proper in the file image."""
        if TACCOM_FEATURE in self.features:
            return self.taccom_header.turn_address - 1, self.taccom_header.turn_size
        return 0, len(self.data)

    def update_trailer(self):
        """Rewrite the DOS trailer into the file image."""
        start, length = self._turn_area()
        position = start + length - TurnDosTrailer.SIZE
        self.data[position:position + TurnDosTrailer.SIZE] = self.dos_trailer.raw

    def compute_turn_checksum(self):
        start, length = self._turn_area()
        area = self.data[start:start + length - TurnDosTrailer.SIZE]
        return (byte_sum(area) + 3*self.turn_header.time_checksum + 13) & 0xFFFFFFFF

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def add_file(self, data, name):
        """Attach a file. Returns the slot number, or None if all slots are used."""
        for i in range(MAX_TRN_ATTACHMENTS):
            if not self.taccom_header.is_used(i):
                self.taccom_header.set_attachment(i, TaccomAttachment(
                    len(self.data) + 1, len(data), pack_string(name, 12, self.charset)))
                self.data.extend(data)
                self.features.add(TACCOM_FEATURE)
                self.dirty = True
                return i
        return None

    def delete_file(self, index):
        if 0 <= index < MAX_TRN_ATTACHMENTS:
            self.dirty = True
            self.taccom_header.clear_attachment(index)

    @property
    def num_files(self):
        return sum(1 for i in range(MAX_TRN_ATTACHMENTS) if self.taccom_header.is_used(i))

    def get_file(self, index):
        """Return (name, data) of an attachment slot, or None if it is empty."""
        if not 0 <= index < MAX_TRN_ATTACHMENTS or not self.taccom_header.is_used(index):
            return None
        attachment = self.taccom_header.get_attachment(index)
        start = attachment.address - 1
        return (unpack_string(attachment.name, self.charset),
                bytes(self.data[start:start + attachment.length]))

    # ------------------------------------------------------------------
    # Rebuilding
    # ------------------------------------------------------------------

    def _sort_key(self, position):
        code = struct.unpack_from('<h', self.data, position)[0]
        kind = commands.get_command_kind(code)
        if kind == commands.OTHER:
            return (kind, 0, code)
        unit_id = struct.unpack_from('<h', self.data, position + 2)[0]
        return (kind, unit_id, code)

    def sort_commands(self):
        """
        Bring commands into canonical order: undefined, ships, planets,
        bases (each by id, then code), then other commands by code.
        """
        self.offsets.sort(key=self._sort_key)

    def update(self):
        """Rebuild the file image from the command list and trailers."""
        self.offsets = [pos for i, pos in enumerate(self.offsets)
                        if self.get_command_type(i) not in (None, commands.UNDEFINED)]

        new_data = bytearray()
        new_offsets = []

        if TACCOM_FEATURE in self.features:
            header = self.taccom_header.copy()
            new_data.extend(bytes(TaccomHeader.SIZE))

            did_turn = False
            for i in range(MAX_TRN_ATTACHMENTS):
                if self.turn_placement == i:
                    self._emit_turn(new_data, new_offsets, header)
                    did_turn = True
                if self.taccom_header.is_used(i):
                    attachment = self.taccom_header.get_attachment(i)
                    header.set_attachment(i, attachment._replace(address=len(new_data) + 1))
                    start = attachment.address - 1
                    new_data.extend(self.data[start:start + attachment.length])
            if not did_turn:
                self._emit_turn(new_data, new_offsets, header)

            header.magic = TACCOM_MAGIC
            new_data[:TaccomHeader.SIZE] = header.raw
            self.taccom_header = header
        else:
            self._update_turn(new_data, new_offsets)

        self.data = new_data
        self.offsets = new_offsets
        self.dirty = False

    def _emit_turn(self, new_data, new_offsets, header):
        header.turn_address = len(new_data) + 1
        self._update_turn(new_data, new_offsets)
        header.turn_size = len(new_data) + 1 - header.turn_address

    def _update_turn(self, new_data, new_offsets):
        header = self.turn_header
        header.time_checksum = byte_sum(header.timestamp)
        header.num_commands = len(self.offsets)
        header.unused = 0

        turn_start = len(new_data)
        new_data.extend(header.raw)
        if self.offsets:
            new_data.append(0)
            table = len(new_data)
            new_data.extend(bytes(4 * len(self.offsets)))
            for i, position in enumerate(self.offsets):
                length = self.get_command_length(i) or 0
                here = len(new_data)
                new_offsets.append(here)
                new_data.extend(self.data[position:position + length + 4])
                struct.pack_into('<i', new_data, table + 4*i, here - turn_start + 1)

        if WINPLAN_FEATURE in self.features:
            self.windows_trailer.magic = V35_MAGIC + b'%02d' % self.version
            new_data.extend(self.windows_trailer.raw)

        self.dos_trailer.checksum = (byte_sum(new_data[turn_start:])
                                     + 3*header.time_checksum + 13) & 0xFFFFFFFF
        self.dos_trailer.signature = DOS_SIGNATURE
        new_data.extend(self.dos_trailer.raw)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def to_bytes(self):
        if self.dirty:
            raise TurnError(f"{self.name}: turn has been modified; call update() first")
        return bytes(self.data)

    def write(self, stream):
        stream.write(self.to_bytes())

    def save(self, filepath):
        path = Path(filepath)
        path.write_bytes(self.to_bytes())
        return path
