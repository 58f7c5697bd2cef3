"""
VGAP Turn Toolkit - Game Files
Readers (and writers, for setting up game directories) for the host data
files a turn is generated from or checked against.

Game directory:
    gen3.dat                 <- generation info, checksums, password
    ship3.dat / ship3.dis    <- current / original ships
    pdata3.dat / pdata3.dis  <- planets
    bdata3.dat / bdata3.dis  <- starbases
    control.dat              <- per-unit checksums (or contrl3.dat)
    player3.rst              <- result file (alternative to the above)
    player3.trn              <- turn file

Specification files are looked up in the game directory first, then in the
root directory.
"""

import struct
from pathlib import Path

from engine.errors import FormatError, FileTooShortError
from engine.structures import (
    NUM_SHIPS, NUM_PLANETS, NUM_PLAYERS, NUM_HULLS_PER_PLAYER, NUM_ENGINE_TYPES,
    NUM_BEAM_TYPES, NUM_TORPEDO_TYPES, NUM_HULL_TYPES, MAXINT, SIGNATURE_SIZE,
    TIMESTAMP_SIZE,
    Ship, Planet, Base, Gen, ResultHeader, PlanetXY,
    BeamSpec, EngineSpec, HullSpec, TorpedoSpec,
    is_valid_timestamp, read_records,
)


# prefix -> (record class, id field, id limit, label)
UNIT_FILES = {
    'ship': (Ship, 'ship_id', NUM_SHIPS, 'ship'),
    'pdata': (Planet, 'planet_id', NUM_PLANETS, 'planet'),
    'bdata': (Base, 'base_id', NUM_PLANETS, 'base'),
}

# Result file sections: record size and counter limit; size 0 means uncounted
RESULT_SECTIONS = [
    (107, NUM_SHIPS),       # 1 ships
    (34, NUM_SHIPS),        # 2 visual contacts
    (85, NUM_PLANETS),      # 3 planets
    (156, NUM_PLANETS),     # 4 starbases
    (6, MAXINT),            # 5 messages
    (0, MAXINT),            # 6 ship coordinates
    (0, MAXINT),            # 7 gen / timestamp
    (100, MAXINT),          # 8 combat recordings
]

MIN_CONTROL_FILE_SIZE = 6000
CONTROL_FILE_WORDS = 2500


def read_exact(data, offset, size, name):
    """Slice `size` bytes at `offset` or fail with FileTooShortError."""
    if offset < 0 or offset + size > len(data):
        raise FileTooShortError(name)
    return data[offset:offset + size]


def read_int16(data, offset, name):
    return struct.unpack('<h', read_exact(data, offset, 2, name))[0]


# ======================================================================
# Unit files
# ======================================================================

class UnitFilePair:
    """Records of one dat/dis pair, keyed by unit id."""

    def __init__(self, dat_name, dis_name):
        self.dat_name = dat_name
        self.dis_name = dis_name
        self.dat = {}
        self.dis = {}
        self.dat_signature = b''
        self.dis_signature = b''

    @property
    def count(self):
        return len(self.dat)


def load_unit_files(game_dir, prefix, player):
    """
    Load a dat/dis pair (ship, pdata or bdata).

    Raises FormatError when the two files do not describe the same units.
    Missing files raise FileNotFoundError.
    """
    record_class, id_field, limit, label = UNIT_FILES[prefix]
    game_dir = Path(game_dir)
    pair = UnitFilePair(f"{prefix}{player}.dat", f"{prefix}{player}.dis")
    dat = (game_dir / pair.dat_name).read_bytes()
    dis = (game_dir / pair.dis_name).read_bytes()

    count = read_int16(dat, 0, pair.dat_name)
    if count != read_int16(dis, 0, pair.dis_name):
        raise FormatError(pair.dat_name, f"does not match {pair.dis_name} (count).")
    if count < 0 or count > limit:
        raise FormatError(pair.dat_name, "has too large counter and is probably invalid.")

    size = record_class.SIZE
    for i in range(count):
        offset = 2 + i*size
        rdat = record_class(read_exact(dat, offset, size, pair.dat_name))
        rdis = record_class(read_exact(dis, offset, size, pair.dis_name))
        unit_id = getattr(rdat, id_field)
        if unit_id != getattr(rdis, id_field):
            raise FormatError(pair.dat_name, f"does not match {pair.dis_name} ({label} Id).")
        if unit_id <= 0 or unit_id > limit:
            raise FormatError(pair.dat_name, f"contains invalid {label} Id {unit_id}.")
        if unit_id in pair.dat:
            raise FormatError(pair.dat_name, f"contains duplicate {label} Id {unit_id}.")
        pair.dat[unit_id] = rdat
        pair.dis[unit_id] = rdis

    end = 2 + count*size
    pair.dat_signature = dat[end:end + SIGNATURE_SIZE]
    pair.dis_signature = dis[end:end + SIGNATURE_SIZE]
    return pair


def pack_unit_file(records, signature=b''):
    """Build the image of a dat or dis file."""
    data = bytearray(struct.pack('<h', len(records)))
    for record in records:
        data.extend(record.to_bytes())
    data.extend(signature)
    return bytes(data)


def write_unit_files(game_dir, prefix, player, dat_records, dis_records, gen=None):
    """Write a dat/dis pair, with signature blocks taken from `gen`."""
    game_dir = Path(game_dir)
    dat_sig = gen.signature2 if gen is not None else b''
    dis_sig = gen.signature1 if gen is not None else b''
    (game_dir / f"{prefix}{player}.dat").write_bytes(pack_unit_file(dat_records, dat_sig))
    (game_dir / f"{prefix}{player}.dis").write_bytes(pack_unit_file(dis_records, dis_sig))


# ======================================================================
# Gen and control files
# ======================================================================

def load_gen(game_dir, player):
    name = f"gen{player}.dat"
    data = (Path(game_dir) / name).read_bytes()
    return Gen(read_exact(data, 0, Gen.SIZE, name))


def load_control_file(game_dir, player):
    """
    Load the unit checksum file.
    Returns (file name, list of words), or (None, None) if there is none.
    """
    game_dir = Path(game_dir)
    for name in ("control.dat", f"contrl{player}.dat"):
        path = game_dir / name
        if path.exists():
            data = path.read_bytes()[:4 * CONTROL_FILE_WORDS]
            if len(data) < MIN_CONTROL_FILE_SIZE:
                raise FormatError(name, "is too short")
            count = len(data) // 4
            return name, list(struct.unpack(f'<{count}I', data[:4*count]))
    return None, None


def get_control_index(kind, unit_id):
    """Index of a unit's checksum in the control file."""
    if kind == 'ship':
        return unit_id - 1 if unit_id <= 500 else unit_id + 1500 - 1
    if kind == 'planet':
        return unit_id + 500 - 1
    return unit_id + 1000 - 1


# ======================================================================
# Result files
# ======================================================================

class ResultFile:
    """The unit sections of a result file."""

    def __init__(self, name):
        self.name = name
        self.timestamp = None
        self.ships = {}
        self.planets = {}
        self.bases = {}


def load_result(game_dir, player):
    """
    Load and validate playerN.rst.
    Raises FormatError for anything that points outside the file.
    """
    name = f"player{player}.rst"
    data = (Path(game_dir) / name).read_bytes()
    header = ResultHeader(read_exact(data, 0, ResultHeader.SIZE, name))
    addresses = header.address

    for i, (block_size, limit) in enumerate(RESULT_SECTIONS, 1):
        address = addresses[i-1]
        if address <= 32 or address > len(data):
            raise FormatError(name, f"Section {i} pointer points outside file")
        if block_size:
            count = read_int16(data, address - 1, name)
            if count < 0 or count > limit:
                raise FormatError(name, f"Section {i} counter out of range")
            if count * block_size + address > len(data):
                raise FormatError(name, f"Section {i} truncated")

    result = ResultFile(name)
    result.timestamp = bytes(read_exact(data, addresses[6] - 1, TIMESTAMP_SIZE, name))
    if not is_valid_timestamp(result.timestamp):
        raise FormatError(name, "Time stamp has an invalid format")

    sections = (
        (addresses[0], Ship, 'ship_id', NUM_SHIPS, 'ship', result.ships),
        (addresses[2], Planet, 'planet_id', NUM_PLANETS, 'planet', result.planets),
        (addresses[3], Base, 'base_id', NUM_PLANETS, 'planet', result.bases),
    )
    for address, record_class, id_field, limit, label, target in sections:
        count = read_int16(data, address - 1, name)
        for i in range(count):
            offset = address + 1 + i*record_class.SIZE
            record = record_class(read_exact(data, offset, record_class.SIZE, name))
            unit_id = getattr(record, id_field)
            if unit_id <= 0 or unit_id > limit:
                raise FormatError(name, f"contains invalid {label} Id {unit_id}.")
            if record_class is Base and unit_id not in result.planets:
                raise FormatError(name, f"contains base at foreign planet {unit_id}.")
            if unit_id in target:
                raise FormatError(name, f"contains duplicate {label} Id {unit_id}.")
            target[unit_id] = record
    return result


def pack_result(ships, planets, bases, timestamp):
    """Build a minimal result file image (used to set up test games)."""
    sections = [
        pack_unit_file(ships),
        struct.pack('<h', 0),
        pack_unit_file(planets),
        pack_unit_file(bases),
        struct.pack('<h', 0),
        b'',
        bytes(timestamp) + bytes(Gen.SIZE - TIMESTAMP_SIZE),
        struct.pack('<h', 0),
    ]
    header = ResultHeader()
    data = bytearray(ResultHeader.SIZE)
    addresses = []
    for section in sections:
        addresses.append(len(data) + 1)
        data.extend(section)
    header.address = addresses
    data[:ResultHeader.SIZE] = header.raw
    return bytes(data)


# ======================================================================
# Specification files
# ======================================================================

class Specifications:
    """Ship list of a game."""

    def __init__(self):
        self.hulls = []
        self.engines = []
        self.beams = []
        self.torpedoes = []
        self.truehull = []
        self.planet_positions = []

    def get_hull(self, number):
        """Hull by 1-based number, or None."""
        if 1 <= number <= len(self.hulls):
            return self.hulls[number - 1]
        return None

    def get_truehull(self, player, slot):
        """Hull number for a player's 1-based hull slot, 0 if none."""
        if 1 <= player <= NUM_PLAYERS and 1 <= slot <= NUM_HULLS_PER_PLAYER:
            return self.truehull[player - 1][slot - 1]
        return 0

    def planet_at(self, x, y):
        """Id of the planet at a position, 0 if none."""
        for i, position in enumerate(self.planet_positions, 1):
            if position.x == x and position.y == y:
                return i
        return 0


def find_spec_file(name, game_dir, root_dir):
    path = Path(game_dir) / name
    if path.exists():
        return path
    return Path(root_dir) / name


def read_spec_file(name, game_dir, root_dir, size):
    data = find_spec_file(name, game_dir, root_dir).read_bytes()
    return read_exact(data, 0, size, name)


def load_xyplan(game_dir, root_dir):
    data = read_spec_file("xyplan.dat", game_dir, root_dir, NUM_PLANETS * PlanetXY.SIZE)
    return read_records(data, PlanetXY, NUM_PLANETS)


def load_specifications(game_dir, root_dir):
    specs = Specifications()
    specs.hulls = read_records(
        read_spec_file("hullspec.dat", game_dir, root_dir, NUM_HULL_TYPES * HullSpec.SIZE),
        HullSpec, NUM_HULL_TYPES)
    specs.torpedoes = read_records(
        read_spec_file("torpspec.dat", game_dir, root_dir, NUM_TORPEDO_TYPES * TorpedoSpec.SIZE),
        TorpedoSpec, NUM_TORPEDO_TYPES)
    specs.beams = read_records(
        read_spec_file("beamspec.dat", game_dir, root_dir, NUM_BEAM_TYPES * BeamSpec.SIZE),
        BeamSpec, NUM_BEAM_TYPES)
    truehull = read_spec_file("truehull.dat", game_dir, root_dir, NUM_PLAYERS * NUM_HULLS_PER_PLAYER * 2)
    values = struct.unpack(f'<{NUM_PLAYERS * NUM_HULLS_PER_PLAYER}h', truehull)
    specs.truehull = [list(values[i:i + NUM_HULLS_PER_PLAYER])
                      for i in range(0, len(values), NUM_HULLS_PER_PLAYER)]
    specs.engines = read_records(
        read_spec_file("engspec.dat", game_dir, root_dir, NUM_ENGINE_TYPES * EngineSpec.SIZE),
        EngineSpec, NUM_ENGINE_TYPES)
    return specs


def write_specifications(directory, specs):
    """Write a ship list (and xyplan, if the specs have one) to a directory."""
    directory = Path(directory)
    (directory / "hullspec.dat").write_bytes(b''.join(h.to_bytes() for h in specs.hulls))
    (directory / "torpspec.dat").write_bytes(b''.join(t.to_bytes() for t in specs.torpedoes))
    (directory / "beamspec.dat").write_bytes(b''.join(b.to_bytes() for b in specs.beams))
    (directory / "engspec.dat").write_bytes(b''.join(e.to_bytes() for e in specs.engines))
    flat = [slot for row in specs.truehull for slot in row]
    (directory / "truehull.dat").write_bytes(struct.pack(f'<{len(flat)}h', *flat))
    if specs.planet_positions:
        (directory / "xyplan.dat").write_bytes(b''.join(p.to_bytes() for p in specs.planet_positions))
