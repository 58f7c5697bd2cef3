"""
VGAP Turn Toolkit - Binary Structures
Fixed-layout records of the VGA Planets 3 file formats.

Every record is a mutable byte image with named fields. Fields are read and
written in place, so a command payload can be copied into a record at a byte
offset and the named fields see the change immediately.

All integers are little-endian.
"""

import struct
from collections import namedtuple


# ======================================================================
# Game constants
# ======================================================================

NUM_SHIPS = 999
NUM_PLANETS = 500
NUM_PLAYERS = 11
NUM_OWNERS = 12
NUM_HULLS_PER_PLAYER = 20
NUM_ENGINE_TYPES = 9
NUM_BEAM_TYPES = 10
NUM_TORPEDO_TYPES = 10
NUM_HULL_TYPES = 105
NUM_WARP_FACTORS = 9
MAXINT = 32767
MAX_TRN_ATTACHMENTS = 10
SIGNATURE_SIZE = 10

# Tech level indexes into Base.tech_levels
ENGINE_TECH = 0
HULL_TECH = 1
BEAM_TECH = 2
TORPEDO_TECH = 3

TIMESTAMP_SIZE = 18
TIMESTAMP_TEMPLATE = b"00-00-000000:00:00"
DEFAULT_CHARSET = 'cp437'


Cost = namedtuple('Cost', 'money tritanium duranium molybdenum')
ShipTransfer = namedtuple('ShipTransfer',
                          'neutronium tritanium duranium molybdenum colonists supplies target_id')
BuildOrder = namedtuple('BuildOrder',
                        'hull_index engine_type beam_type num_beams launcher_type num_launchers zero')


def byte_sum(data):
    """Sum of all bytes, as used by every VGAP checksum."""
    return sum(data)


def is_valid_timestamp(timestamp):
    """Check an 18-byte host timestamp against mm-dd-yyyyhh:mm:ss."""
    if len(timestamp) != TIMESTAMP_SIZE:
        return False
    for have, want in zip(timestamp, TIMESTAMP_TEMPLATE):
        if want == ord('0'):
            if not ord('0') <= have <= ord('9'):
                return False
        elif have != want:
            return False
    return True


def make_timestamp(value):
    """
    Convert a timestamp given as bytes, str or datetime into 18 raw bytes.
    """
    if hasattr(value, 'strftime'):
        value = value.strftime('%m-%d-%Y%H:%M:%S')
    if isinstance(value, str):
        value = value.encode('ascii')
    value = bytes(value)
    if len(value) != TIMESTAMP_SIZE:
        raise ValueError(f"Timestamp must be {TIMESTAMP_SIZE} bytes, got {len(value)}")
    return value


def pack_string(text, size, charset=DEFAULT_CHARSET):
    """Encode text into a fixed-size, space-padded field."""
    data = text.encode(charset, errors='replace')[:size]
    return data + b' ' * (size - len(data))


def unpack_string(data, charset=DEFAULT_CHARSET):
    """Decode a fixed-size field, dropping trailing blanks and NULs."""
    return bytes(data).rstrip(b' \x00').decode(charset, errors='replace')


# ======================================================================
# Record base
# ======================================================================

class Record:
    """
    Fixed-size binary record.

    Subclasses declare SIZE and LAYOUT, a mapping of field name to
    (offset, struct format, wrapper). Single-value fields read as int (or
    bytes for 's' formats); multi-value fields read as a list, or as the
    wrapper namedtuple when one is given.
    """

    SIZE = 0
    LAYOUT = {}

    def __init__(self, data=None):
        if data is None:
            data = bytes(self.SIZE)
        if len(data) < self.SIZE:
            raise ValueError(f"{type(self).__name__} needs {self.SIZE} bytes, got {len(data)}")
        object.__setattr__(self, 'raw', bytearray(data[:self.SIZE]))

    def __getattr__(self, name):
        try:
            offset, fmt, wrapper = type(self).LAYOUT[name]
        except KeyError:
            raise AttributeError(f"{type(self).__name__} has no field '{name}'") from None
        values = struct.unpack_from('<' + fmt, self.raw, offset)
        if wrapper is not None:
            return wrapper(*values)
        if len(values) == 1:
            return values[0]
        return list(values)

    def __setattr__(self, name, value):
        layout = type(self).LAYOUT.get(name)
        if layout is None:
            object.__setattr__(self, name, value)
            return
        offset, fmt, _ = layout
        if isinstance(value, (list, tuple)):
            struct.pack_into('<' + fmt, self.raw, offset, *value)
        else:
            struct.pack_into('<' + fmt, self.raw, offset, value)

    def __eq__(self, other):
        return type(self) is type(other) and self.raw == other.raw

    def __repr__(self):
        return f"<{type(self).__name__} {bytes(self.raw).hex()}>"

    def copy(self):
        return type(self)(self.raw)

    def to_bytes(self):
        return bytes(self.raw)

    def set_item(self, name, index, value):
        """Set one element of an array field."""
        values = list(getattr(self, name))
        values[index] = value
        setattr(self, name, values)

    @classmethod
    def field_range(cls, name):
        """Return (offset, size) of a field."""
        offset, fmt, _ = cls.LAYOUT[name]
        return offset, struct.calcsize('<' + fmt)


def _layout(*fields):
    return {name: (offset, fmt, wrapper) for name, offset, fmt, wrapper in fields}


# ======================================================================
# Unit records
# ======================================================================

class Ship(Record):
    SIZE = 107
    LAYOUT = _layout(
        ('ship_id', 0, 'h', None),
        ('owner', 2, 'h', None),
        ('friendly_code', 4, '3s', None),
        ('warp_factor', 7, 'h', None),
        ('waypoint_dx', 9, 'h', None),
        ('waypoint_dy', 11, 'h', None),
        ('x', 13, 'h', None),
        ('y', 15, 'h', None),
        ('engine_type', 17, 'h', None),
        ('hull_type', 19, 'h', None),
        ('beam_type', 21, 'h', None),
        ('num_beams', 23, 'h', None),
        ('num_bays', 25, 'h', None),
        ('torpedo_type', 27, 'h', None),
        ('ammo', 29, 'h', None),
        ('num_launchers', 31, 'h', None),
        ('mission', 33, 'h', None),
        ('primary_enemy', 35, 'h', None),
        ('mission_tow_parameter', 37, 'h', None),
        ('damage', 39, 'h', None),
        ('crew', 41, 'h', None),
        ('colonists', 43, 'h', None),
        ('name', 45, '20s', None),
        ('ore', 65, '4h', None),
        ('supplies', 73, 'h', None),
        ('unload', 75, '7h', ShipTransfer),
        ('transfer', 89, '7h', ShipTransfer),
        ('mission_intercept_parameter', 103, 'h', None),
        ('money', 105, 'h', None),
    )


class Planet(Record):
    SIZE = 85
    LAYOUT = _layout(
        ('owner', 0, 'h', None),
        ('planet_id', 2, 'h', None),
        ('friendly_code', 4, '3s', None),
        ('num_mines', 7, 'h', None),
        ('num_factories', 9, 'h', None),
        ('num_defense_posts', 11, 'h', None),
        ('mined_ore', 13, '4i', None),
        ('colonists', 29, 'i', None),
        ('supplies', 33, 'i', None),
        ('money', 37, 'i', None),
        ('ground_ore', 41, '4i', None),
        ('ore_density', 57, '4h', None),
        ('colonist_tax', 65, 'h', None),
        ('native_tax', 67, 'h', None),
        ('colonist_happiness', 69, 'h', None),
        ('native_happiness', 71, 'h', None),
        ('native_government', 73, 'h', None),
        ('natives', 75, 'i', None),
        ('native_race', 79, 'h', None),
        ('temperature_code', 81, 'h', None),
        ('build_base_flag', 83, 'h', None),
    )


class Base(Record):
    SIZE = 156
    LAYOUT = _layout(
        ('base_id', 0, 'h', None),
        ('owner', 2, 'h', None),
        ('num_base_defense_posts', 4, 'h', None),
        ('damage', 6, 'h', None),
        ('tech_levels', 8, '4h', None),
        ('engine_storage', 16, '9h', None),
        ('hull_storage', 34, '20h', None),
        ('beam_storage', 74, '10h', None),
        ('launcher_storage', 94, '10h', None),
        ('torpedo_storage', 114, '10h', None),
        ('num_fighters', 134, 'h', None),
        ('shipyard_id', 136, 'h', None),
        ('shipyard_action', 138, 'h', None),
        ('mission', 140, 'h', None),
        ('build_order', 142, '7h', BuildOrder),
    )


# ======================================================================
# Specification records
# ======================================================================

class BeamSpec(Record):
    SIZE = 36
    LAYOUT = _layout(
        ('name', 0, '20s', None),
        ('cost', 20, '4h', Cost),
        ('mass', 28, 'h', None),
        ('tech_level', 30, 'h', None),
        ('kill_power', 32, 'h', None),
        ('damage_power', 34, 'h', None),
    )


class EngineSpec(Record):
    SIZE = 66
    LAYOUT = _layout(
        ('name', 0, '20s', None),
        ('cost', 20, '4h', Cost),
        ('tech_level', 28, 'h', None),
        ('fuel_factors', 30, '9i', None),
    )


class HullSpec(Record):
    SIZE = 60
    LAYOUT = _layout(
        ('name', 0, '30s', None),
        ('picture_number', 30, 'h', None),
        ('zero', 32, 'h', None),
        ('tritanium', 34, 'h', None),
        ('duranium', 36, 'h', None),
        ('molybdenum', 38, 'h', None),
        ('max_fuel', 40, 'h', None),
        ('max_crew', 42, 'h', None),
        ('num_engines', 44, 'h', None),
        ('mass', 46, 'h', None),
        ('tech_level', 48, 'h', None),
        ('max_cargo', 50, 'h', None),
        ('num_bays', 52, 'h', None),
        ('max_launchers', 54, 'h', None),
        ('max_beams', 56, 'h', None),
        ('money', 58, 'h', None),
    )


class TorpedoSpec(Record):
    SIZE = 38
    LAYOUT = _layout(
        ('name', 0, '20s', None),
        ('torpedo_cost', 20, 'h', None),
        ('launcher_cost', 22, '4h', Cost),
        ('launcher_mass', 30, 'h', None),
        ('tech_level', 32, 'h', None),
        ('kill_power', 34, 'h', None),
        ('damage_power', 36, 'h', None),
    )


class PlanetXY(Record):
    SIZE = 6
    LAYOUT = _layout(
        ('x', 0, 'h', None),
        ('y', 2, 'h', None),
        ('owner', 4, 'h', None),
    )


# ======================================================================
# Game / result file records
# ======================================================================

class Gen(Record):
    SIZE = 157
    LAYOUT = _layout(
        ('timestamp', 0, '18s', None),
        ('scores', 18, '44h', None),
        ('player_id', 106, 'h', None),
        ('password', 108, '20s', None),
        ('zero', 128, 'B', None),
        ('ship_checksum', 129, 'I', None),
        ('planet_checksum', 133, 'I', None),
        ('base_checksum', 137, 'I', None),
        ('new_password_flag', 141, 'h', None),
        ('new_password', 143, '10s', None),
        ('turn_number', 153, 'h', None),
        ('timestamp_checksum', 155, 'h', None),
    )

    @property
    def signature1(self):
        """Signature block expected at the end of .dis files."""
        return self.password[:SIGNATURE_SIZE]

    @property
    def signature2(self):
        """Signature block expected at the end of .dat files."""
        return self.password[SIGNATURE_SIZE:]


class ResultHeader(Record):
    SIZE = 52
    LAYOUT = _layout(
        ('address', 0, '8i', None),
        ('signature', 32, '8s', None),
        ('address_windows', 40, 'i', None),
        ('address_leech', 44, 'i', None),
        ('address_skore', 48, 'i', None),
    )


# ======================================================================
# Turn file records
# ======================================================================

class TurnHeader(Record):
    SIZE = 28
    LAYOUT = _layout(
        ('player_id', 0, 'h', None),
        ('num_commands', 2, 'i', None),
        ('timestamp', 6, '18s', None),
        ('unused', 24, 'h', None),
        ('time_checksum', 26, 'h', None),
    )


class TurnDosTrailer(Record):
    SIZE = 256
    LAYOUT = _layout(
        ('checksum', 0, 'I', None),
        ('signature', 4, 'I', None),
        ('registration_key', 8, '51I', None),
        ('player_secret', 212, '11I', None),
    )


class TurnWindowsTrailer(Record):
    SIZE = 316
    LAYOUT = _layout(
        ('magic', 0, '8s', None),
        ('vph_key', 8, '2I', None),
        ('regstr1', 16, '50s', None),
        ('regstr2', 66, '50s', None),
        ('regstr3', 116, '50s', None),
        ('regstr4', 166, '50s', None),
        ('unused', 216, '100s', None),
    )


TaccomAttachment = namedtuple('TaccomAttachment', 'address length name')


class TaccomHeader(Record):
    SIZE = 218
    ATTACHMENT_SIZE = 20
    LAYOUT = _layout(
        ('magic', 0, '10s', None),
        ('turn_address', 10, 'i', None),
        ('turn_size', 14, 'i', None),
    )

    def get_attachment(self, index):
        """Return attachment slot `index` as a TaccomAttachment."""
        return TaccomAttachment(*struct.unpack_from('<ii12s', self.raw, 18 + index * self.ATTACHMENT_SIZE))

    def set_attachment(self, index, attachment):
        struct.pack_into('<ii12s', self.raw, 18 + index * self.ATTACHMENT_SIZE, *attachment)

    def clear_attachment(self, index):
        self.set_attachment(index, TaccomAttachment(0, 0, bytes(12)))

    def is_used(self, index):
        """An attachment slot is used when it has a non-blank name."""
        return bool(self.get_attachment(index).name.strip(b' \x00'))


def read_records(data, record_class, count, offset=0):
    """Read `count` consecutive records from a byte buffer."""
    size = record_class.SIZE
    return [record_class(data[offset + i*size:offset + (i+1)*size]) for i in range(count)]
