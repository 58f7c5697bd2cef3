"""
VGAP Turn Toolkit - Turn Checker
Verifies that a player's turn only contains changes the rules allow.

The checker loads the unit files in their "before" (dis) and "after" (dat)
state, either from a game directory or from a result file plus the turn
file, and then runs:

  1. Spec file check   - the ship list is usable at all
  2. Ship range check  - every ship field is unchanged or legal
  3. Planet range check
  4. Orbit flow check  - resources at each planet add up
  5. Space flow check  - no resources appear in free space

Every problem is written as a block to the log and recorded in
Checker.faults; advisory notes go to Checker.warnings.
With the html option the log file is an HTML fragment: escaped text in a
<pre> block, each fault block in a coloured box, the verdict in bold. The
console output stays plain.
"""

import html
import sys
from collections import namedtuple
from pathlib import Path

from engine.check.config import CheckerConfig, TECH_COSTS
from engine.check.summary import ResourceSummary, RESOURCE_FIELDS
from engine.errors import FormatError, UnitReferenceError, CheckAborted
from engine.gamefiles import (
    load_gen, load_unit_files, load_control_file, get_control_index,
    load_result, load_xyplan, load_specifications,
)
from engine.structures import (
    NUM_SHIPS, NUM_PLANETS, NUM_PLAYERS, NUM_HULLS_PER_PLAYER, NUM_ENGINE_TYPES,
    NUM_BEAM_TYPES, NUM_TORPEDO_TYPES, NUM_HULL_TYPES, MAXINT, SIGNATURE_SIZE,
    ENGINE_TECH, HULL_TECH, BEAM_TECH, TORPEDO_TECH,
    byte_sum, is_valid_timestamp,
)
from engine.turn_processor import TurnProcessor
from engine.turnfile import TurnFile


DIVIDER = '-' * 70

# HTML log: fault blocks are boxes coloured by the first letter of their
# first line (RANGE, WARNING, INVALID, BALANCE, CHECKSUM)
SECTION_COLOURS = {'R': 'ffcccc', 'W': 'ffffcc', 'I': 'ccffcc', 'B': 'ccddff', 'C': 'ccffcc'}
SECTION_TAG = '<div style="padding:1px; margin:1px; border:solid black 1px; background-color:#{colour}">'
HTML_RAW, HTML_SECTION_START, HTML_IN_SECTION = range(3)

# Recorded problem. kind is RANGE, INVALID, BALANCE, CHECKSUM, SYNTAX, FATAL
# or WARNING; subject names the field or item.
Fault = namedtuple('Fault', 'kind context subject lines')

UNIT_LIMIT = 10000
RESOURCE_LIMIT = 1000000000
POPULATION_LIMIT = 10000000

# Structure limits: (label, planet field, colonist cutoff)
STRUCTURE_LIMITS = [
    ('Mines', 'num_mines', 200),
    ('Factories', 'num_factories', 100),
    ('Defense Posts', 'num_defense_posts', 50),
]


def structure_limit(colonists, cutoff):
    """Maximum number of a structure a colony of this size supports."""
    if colonists > cutoff:
        return int((colonists - cutoff) ** 0.5 + 0.5) + cutoff
    return colonists


def plural(count, word):
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class ExplanationTracker:
    """Remembers which long explanations were already printed in a run."""

    def __init__(self):
        self.explained = set()

    def first(self, topic):
        """True the first time a topic is asked for."""
        if topic in self.explained:
            return False
        self.explained.add(topic)
        return True


# ======================================================================
# Turn replay (result mode)
# ======================================================================

class CheckerTurnProcessor(TurnProcessor):
    """Applies a turn file to the checker's copies of the result units."""

    def __init__(self, checker, turn_name):
        self.checker = checker
        self.turn_name = turn_name

    def handle_invalid_command(self, code):
        lines = [f"WARNING: unknown command with code {code}."]
        if self.checker.explanations.first('unknown_command'):
            lines += ["    This is not a standard VGAP turn command, and the checker does not",
                      "    know what it means. This should not happen normally. Your host",
                      "    might reject the turn file."]
        self.checker.report('WARNING', f"Command {code}", lines)

    def _validate(self, units, label, unit_id, limit):
        if unit_id <= 0 or unit_id > limit:
            raise UnitReferenceError(self.turn_name, f"contains invalid {label} Id {unit_id}")
        if unit_id not in units:
            raise UnitReferenceError(self.turn_name, f"refers to {label} {unit_id} which is not ours")

    def validate_ship(self, ship_id):
        self._validate(self.checker.ships, 'ship', ship_id, NUM_SHIPS)

    def validate_planet(self, planet_id):
        self._validate(self.checker.planets, 'planet', planet_id, NUM_PLANETS)

    def validate_base(self, base_id):
        self._validate(self.checker.bases, 'base', base_id, NUM_PLANETS)

    def _get(self, units, unit_id):
        if unit_id in units:
            return units[unit_id][0].copy()
        return None

    def _store(self, units, unit_id, record):
        if unit_id in units:
            units[unit_id][0].raw[:] = record.raw

    def get_ship_data(self, ship_id):
        return self._get(self.checker.ships, ship_id)

    def get_planet_data(self, planet_id):
        return self._get(self.checker.planets, planet_id)

    def get_base_data(self, base_id):
        return self._get(self.checker.bases, base_id)

    def store_ship_data(self, ship_id, ship):
        self._store(self.checker.ships, ship_id, ship)

    def store_planet_data(self, planet_id, planet):
        self._store(self.checker.planets, planet_id, planet)

    def store_base_data(self, base_id, base):
        self._store(self.checker.bases, base_id, base)

    def add_message(self, receiver, text):
        pass

    def add_new_password(self, password):
        pass

    def add_alliance_command(self, text):
        pass


# ======================================================================
# Checker
# ======================================================================

class Checker:
    """
    Checks one player's turn.

    log, output and error are text streams (or None). Progress and fault
    blocks go to output and log; abort messages go to error and log.
    """

    def __init__(self, game_dir, root_dir, player, config=None,
                 log=None, output=None, error=None, explanations=None):
        self.game_dir = Path(game_dir)
        self.root_dir = Path(root_dir)
        self.player = player
        self.config = config or CheckerConfig()
        self.log = log
        self.output = output if output is not None else sys.stdout
        self.error = error if error is not None else sys.stderr
        self.explanations = explanations or ExplanationTracker()

        self.faults = []
        self.warnings = []
        self.verdict = None
        self.context = ''

        self.had_error = False
        self.had_any_error = False
        self.had_checksum_error = False
        self.had_divider = False
        self.html_section = HTML_RAW

        # id -> (dat, dis)
        self.ships = {}
        self.planets = {}
        self.bases = {}
        self.seen = set()
        self.gen = None
        self.specs = None
        self.planet_positions = []

    # ------------------------------------------------------------------
    # Log output
    # ------------------------------------------------------------------

    @staticmethod
    def _write(stream, text, end='\n'):
        if stream is not None:
            stream.write(text + end)

    def _write_log(self, line):
        if self.config.html:
            line = html.escape(line, quote=False)
        self._write(self.log, line)

    def _start_section(self, line):
        """In HTML mode, open a coloured box if line starts a fault block."""
        colour = None
        if len(line) >= 2 and 'A' <= line[1] <= 'Z':
            colour = SECTION_COLOURS.get(line[0])
        if colour is None:
            self.html_section = HTML_RAW
        else:
            self._write(self.log, SECTION_TAG.format(colour=colour), end='')
            self.html_section = HTML_IN_SECTION

    def log_line(self, line=''):
        if self.config.html and self.html_section == HTML_SECTION_START:
            self._start_section(line)
        self._write(self.output, line)
        self._write_log(line)
        self.had_divider = False

    def log_bold(self, line):
        """Verdict line; bold in an HTML log."""
        if not self.config.html:
            self.log_line(line)
            return
        if self.html_section == HTML_SECTION_START:
            self.html_section = HTML_RAW
        self._write(self.output, line)
        self._write(self.log, f"<b>{html.escape(line, quote=False)}</b>")
        self.had_divider = False

    def log_divider(self):
        if self.config.html:
            # The HTML log separates blocks by boxes instead of dividers
            if not self.had_divider:
                self._write(self.output, DIVIDER)
                self.had_divider = True
            if self.html_section == HTML_IN_SECTION:
                self._write(self.log, "</div>", end='')
            self.html_section = HTML_SECTION_START
        elif not self.had_divider:
            self._write(self.output, DIVIDER)
            self._write(self.log, DIVIDER)
            self.had_divider = True

    def log_item(self, name, value):
        self.log_line(f"  {name:<18} : {value}")

    def log_check(self, title):
        if self.had_error:
            self.log_item(title, "failed")
            self.had_any_error = True
            self.had_error = False
        else:
            self.log_item(title, "succeeded")

    def log_abort(self, line):
        self._write(self.error, line)
        self._write_log(line)
        if self.config.html:
            self._write(self.log, "<b>Check aborted.</b>")
        else:
            self._write(self.log, "Check aborted.")

    def report(self, kind, subject, lines):
        """Write a fault block and record it."""
        self.log_divider()
        for line in lines:
            self.log_line(line)
        self.log_divider()
        self._record(kind, subject, lines)

    def _record(self, kind, subject, lines):
        fault = Fault(kind, self.context, subject, list(lines))
        if kind == 'WARNING':
            self.warnings.append(fault)
            return
        self.faults.append(fault)
        if kind == 'CHECKSUM':
            self.had_checksum_error = True
        else:
            self.had_error = True

    def die(self, line):
        self.log_abort(line)
        self._record('FATAL', '', [line])
        raise CheckAborted(line)

    @property
    def exit_status(self):
        """0 if the turn is valid, 1 if faults were found, 2 if the check was aborted."""
        if self.verdict == "Check aborted.":
            return 2
        return 0 if not self.faults else 1

    # ------------------------------------------------------------------
    # Main
    # ------------------------------------------------------------------

    def run(self):
        """Run all checks. Returns the exit status (0 if no fault was found)."""
        if self.config.html:
            self._write(self.log, "<pre>", end='')
        try:
            self.had_error = False
            if self.config.result_mode:
                self.log_line("Loading Result File:")
                timestamp = self.load_result()
                self.log_line("Loading Turn File:")
                self.load_turn(timestamp)
            else:
                self.log_line("Loading Game:")
                self.load_gen()
                self.load_ships()
                self.load_planets()
                if self.config.checksums:
                    self.log_line("Validating Checksums:")
                    self.load_checksums()
            self.load_specs()

            if self.had_error:
                self.log_line("Loading failed.")
                self.had_any_error = True
                self.verdict = "Loading failed."
            else:
                self.log_line("Checking:")
                self.had_error = False
                self.had_any_error = False
                self.range_check_specs()
                if self.had_error:
                    self.log_item("Spec file check", "failed")
                    self.log_line("The checker cannot handle these specification files.")
                    self.log_line("If you see this message on a correct ship list,")
                    self.log_line("please report it.")
                    self.die("Check cannot continue.")
                self.log_check("Spec file check")
                self.range_check_ships()
                self.log_check("Ship range check")
                self.range_check_planets()
                self.log_check("Planet range check")
                self.flow_check_orbits()
                self.log_check("Orbit flow check")
                self.flow_check_free_space()
                self.log_check("Space flow check")
                self.log_line()
                if self.had_any_error:
                    self.verdict = "Turn is invalid."
                elif self.had_checksum_error:
                    self.verdict = "Turn has checksum errors."
                else:
                    self.verdict = "Turn is OK."
                self.log_bold(self.verdict)
        except (FormatError, UnitReferenceError) as e:
            line = f"SYNTAX: {e}"
            self.log_abort(line)
            self._record('SYNTAX', e.filename, [line])
            self._abort()
        except CheckAborted:
            self._abort()
        except OSError as e:
            if e.filename:
                line = f"FATAL: {Path(e.filename).name}: {e.strerror}"
            else:
                line = f"FATAL: {e}"
            self.log_abort(line)
            self._record('FATAL', e.filename or '', [line])
            self._abort()
        if self.config.html:
            self._write(self.log, "</pre>")
        return self.exit_status

    def _abort(self):
        self.had_any_error = True
        self.verdict = "Check aborted."

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_gen(self):
        name = f"gen{self.player}.dat"
        gen = load_gen(self.game_dir, self.player)
        self.gen = gen

        if gen.player_id != self.player:
            self.report('INVALID', 'Player', [f"INVALID: {name} belongs to player {gen.player_id}, not {self.player}"])
        if gen.new_password_flag not in (0, 13):
            self.report('INVALID', 'Password flag',
                        [f"INVALID: password flag has invalid value {gen.new_password_flag}"])
        if gen.turn_number <= 0:
            self.report('INVALID', 'Turn number', [f"INVALID: turn number has invalid value {gen.turn_number}"])
        if not is_valid_timestamp(gen.timestamp):
            self.report('INVALID', 'Timestamp', ["INVALID: time stamp has an invalid format"])
        self.check_checksum(f"{name} timestamp", byte_sum(gen.timestamp), gen.timestamp_checksum)

    def _load_pair(self, prefix):
        pair = load_unit_files(self.game_dir, prefix, self.player)
        return pair, {unit_id: (pair.dat[unit_id], pair.dis[unit_id]) for unit_id in pair.dat}

    def load_ships(self):
        pair, self.ships = self._load_pair('ship')
        self.seen = set()
        self.check_signatures('ship', pair)
        self.log_item("Ships", pair.count)

    def load_planets(self):
        self.planet_positions = load_xyplan(self.game_dir, self.root_dir)

        pair, self.planets = self._load_pair('pdata')
        self.log_item("Planets", pair.count)
        self.check_signatures('pdata', pair)

        pair, self.bases = self._load_pair('bdata')
        for base_id in self.bases:
            if base_id not in self.planets:
                raise FormatError(pair.dat_name, f"contains base at foreign planet Id {base_id}.")
        self.log_item("Starbases", pair.count)
        self.check_signatures('bdata', pair)

    def load_checksums(self):
        name, words = load_control_file(self.game_dir, self.player)
        if name is None:
            self.die("FATAL: Unable to find a checksum (control) file.")
        self.log_item("Checksum File", name)
        self.log_item("Entries", len(words))

        totals = {'ship': 0, 'planet': 0, 'base': 0}
        counts = {'ship': 0, 'planet': 0, 'base': 0}
        for ship_id in sorted(self.ships):
            dat, dis = self.ships[ship_id]
            index = get_control_index('ship', ship_id)
            if index >= len(words):
                self.context = f"Ship {ship_id}"
                self.report('CHECKSUM', f"Ship {ship_id}",
                            [f"CHECKSUM: Checksum for ship {ship_id} is not contained in file {name}.",
                             "    Ships above that Id are not checked."])
                break
            unit_sum = byte_sum(dat.raw)
            self.check_checksum(f"Ship {ship_id}", unit_sum, words[index])
            totals['ship'] += unit_sum + byte_sum(dis.raw)
            counts['ship'] += 1

        for planet_id in sorted(self.planets):
            dat, dis = self.planets[planet_id]
            unit_sum = byte_sum(dat.raw)
            self.check_checksum(f"Planet {planet_id}", unit_sum, words[get_control_index('planet', planet_id)])
            totals['planet'] += unit_sum + byte_sum(dis.raw)
            counts['planet'] += 1
        for base_id in sorted(self.bases):
            dat, dis = self.bases[base_id]
            unit_sum = byte_sum(dat.raw)
            self.check_checksum(f"Starbase {base_id}", unit_sum, words[get_control_index('base', base_id)])
            totals['base'] += unit_sum + byte_sum(dis.raw)
            counts['base'] += 1

        # Totals as if both files were complete and correctly signed
        signature_sum = byte_sum(self.gen.signature1) + byte_sum(self.gen.signature2)
        for kind, title, stored in (('ship', "Ship totals", self.gen.ship_checksum),
                                    ('planet', "Planet totals", self.gen.planet_checksum),
                                    ('base', "Starbase totals", self.gen.base_checksum)):
            count_sum = byte_sum(counts[kind].to_bytes(2, 'little', signed=True))
            expected = (totals[kind] + 2*count_sum + signature_sum) & 0xFFFFFFFF
            self.check_checksum(title, expected, stored)

    def load_result(self):
        """Load playerN.rst; returns its timestamp."""
        self.planet_positions = load_xyplan(self.game_dir, self.root_dir)
        result = load_result(self.game_dir, self.player)

        self.ships = {i: (s.copy(), s) for i, s in result.ships.items()}
        self.planets = {i: (p.copy(), p) for i, p in result.planets.items()}
        self.bases = {i: (b.copy(), b) for i, b in result.bases.items()}
        self.seen = set()
        self.log_item("Ships", len(self.ships))
        self.log_item("Planets", len(self.planets))
        self.log_item("Starbases", len(self.bases))
        return result.timestamp

    def load_turn(self, timestamp):
        name = f"player{self.player}.trn"
        turn = TurnFile.load(self.game_dir / name)
        if turn.player != self.player:
            raise FormatError(name, f"belongs to player {turn.player}, not {self.player}")
        if turn.timestamp != timestamp:
            raise FormatError(name, "does not belong to same turn as result file")

        CheckerTurnProcessor(self, name).handle_turn_file(turn)
        self.log_item("Commands", turn.num_commands)

    def load_specs(self):
        self.specs = load_specifications(self.game_dir, self.root_dir)
        self.specs.planet_positions = self.planet_positions

    # ------------------------------------------------------------------
    # Checksums
    # ------------------------------------------------------------------

    def check_checksum(self, title, expected, stored):
        if self.config.checksums and expected != stored:
            self.report('CHECKSUM', title, [f"CHECKSUM: {title} checksum mismatch:",
                                            f"    Stored value is {stored}",
                                            f"    Should be {expected} as computed from data"])

    def check_signatures(self, prefix, pair):
        """Compare the signature blocks of a dat/dis pair against the gen file."""
        if not self.config.checksums:
            return
        base = f"{prefix}{self.player}"
        if not pair.dat_signature and not pair.dis_signature:
            self.report('CHECKSUM', base, [f"CHECKSUM: {base}.dat/.dis do not have a signature block."])
            return
        for suffix, signature, expected in (('dat', pair.dat_signature, self.gen.signature2),
                                            ('dis', pair.dis_signature, self.gen.signature1)):
            if len(signature) != SIGNATURE_SIZE:
                self.report('CHECKSUM', f"{base}.{suffix}",
                            [f"CHECKSUM: {base}.{suffix} signature is only {len(signature)} bytes, expecting 10."])
            elif signature != expected:
                self.report('CHECKSUM', f"{base}.{suffix}", [f"CHECKSUM: {base}.{suffix} signature is invalid."])

    # ------------------------------------------------------------------
    # Single values
    # ------------------------------------------------------------------

    def range_check_value(self, name, value, low, high):
        if low <= value <= high:
            return
        if value == -1 and self.config.minus1_special:
            return
        self.report('RANGE', name, [f"RANGE: {self.context}: {name} out of allowed range.",
                                    f"    Value is {value}",
                                    f"    Allowed range is {low} .. {high}"])

    def check_editable(self, name, dat, dis, low, high):
        """A field the player may change, within limits."""
        if dat == dis and not self.config.picky:
            return
        if low <= dat <= high:
            return
        lines = [f"RANGE: {self.context}: {name} out of allowed range.",
                 f"    Value is {dat}"]
        if low == high:
            lines.append(f"    Allowed value is {low}")
        else:
            lines.append(f"    Allowed range is {low} .. {high}")
        lines.append(f"    Original value was {dis}")
        if dat == dis:
            lines.append("    The original value is already out of range.")
            if self.explanations.first('host_range'):
                lines += ["    This means the host made a mistake by putting this value here.",
                          "    It can still confuse some programs (including host itself)."]
        self.report('RANGE', name, lines)

    def check_invariant(self, name, dat, dis, low, high):
        """A field only the host may change."""
        if dat != dis:
            lines = [f"INVALID: {self.context}: {name} was modified.",
                     f"    Value is {dat}",
                     f"    Original value was {dis}"]
            if self.explanations.first('invariant'):
                lines += ["    This is not permitted by the rules, and will not be transmitted",
                          "    to the host. Some of the following errors may be consequences of",
                          "    this one. The check will continue with the old value, because",
                          "    that is what the host will see."]
            self.report('INVALID', name, lines)
        self.range_check_value(name, dis, low, high)

    # ------------------------------------------------------------------
    # Spec file check
    # ------------------------------------------------------------------

    def _range_check_cost(self, cost):
        self.range_check_value("MC cost", cost.money, 0, MAXINT)
        self.range_check_value("Tri cost", cost.tritanium, 0, MAXINT)
        self.range_check_value("Dur cost", cost.duranium, 0, MAXINT)
        self.range_check_value("Mol cost", cost.molybdenum, 0, MAXINT)

    def range_check_specs(self):
        for i, engine in enumerate(self.specs.engines, 1):
            self.context = f"Engine {i}"
            self._range_check_cost(engine.cost)
            self.range_check_value("Tech level", engine.tech_level, 1, 10)

        for i, beam in enumerate(self.specs.beams, 1):
            self.context = f"Beam {i}"
            self._range_check_cost(beam.cost)
            self.range_check_value("Tech level", beam.tech_level, 1, 10)

        for i, torpedo in enumerate(self.specs.torpedoes, 1):
            self.context = f"Torpedo {i}"
            self._range_check_cost(torpedo.launcher_cost)
            self.range_check_value("Torp MC cost", torpedo.torpedo_cost, 0, MAXINT)
            self.range_check_value("Tech level", torpedo.tech_level, 1, 10)

        for i, hull in enumerate(self.specs.hulls, 1):
            self.context = f"Hull {i}"
            self.range_check_value("MC cost", hull.money, 0, MAXINT)
            self.range_check_value("Tri cost", hull.tritanium, 0, MAXINT)
            self.range_check_value("Dur cost", hull.duranium, 0, MAXINT)
            self.range_check_value("Mol cost", hull.molybdenum, 0, MAXINT)
            self.range_check_value("Fuel tank", hull.max_fuel, 0, MAXINT)
            self.range_check_value("Engines", hull.num_engines, 1, MAXINT)
            self.range_check_value("Tech level", hull.tech_level, 1, 10)
            self.range_check_value("Cargo room", hull.max_cargo, 0, MAXINT)
            self.range_check_value("Fighter bay count", hull.num_bays, 0, MAXINT)
            self.range_check_value("Torp launcher count", hull.max_launchers, 0, MAXINT)
            self.range_check_value("Beam count", hull.max_beams, 0, MAXINT)

        for player, slots in enumerate(self.specs.truehull, 1):
            self.context = f"Truehull player {player}"
            for slot, hull_number in enumerate(slots, 1):
                self.range_check_value(f"Slot {slot}", hull_number, 0, NUM_HULL_TYPES)

    # ------------------------------------------------------------------
    # Ship range check
    # ------------------------------------------------------------------

    def check_transfer(self, name, dat, dis):
        self.check_editable(f"{name} Colonists", dat.colonists, dis.colonists, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Neutronium", dat.neutronium, dis.neutronium, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Tritanium", dat.tritanium, dis.tritanium, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Duranium", dat.duranium, dis.duranium, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Molybdenum", dat.molybdenum, dis.molybdenum, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Supplies", dat.supplies, dis.supplies, 0, UNIT_LIMIT)
        self.check_editable(f"{name} Target", dat.target_id, dis.target_id, 0, NUM_SHIPS)

        if self.config.picky or self.config.result_mode:
            if dat.target_id != 0 and not any(dat[:6]):
                lines = [f"INVALID: {self.context}: {name} order is empty but has target."]
                if self.explanations.first('empty_transfer'):
                    lines += ["    Such orders are sometimes created by PLANETS.EXE in local data files.",
                              "    They might trigger false cheat alerts in the host, and should",
                              "    therefore not be sent to the host."]
                self.report('INVALID', f"{name} Target", lines)

    def check_transfer_target(self, name, dat, planet_id):
        if any(dat[:6]) and dat.target_id != planet_id:
            self.report('RANGE', f"{name} Target", [f"RANGE: {self.context}: {name} order has invalid target.",
                                                    f"    Value is {dat.target_id}",
                                                    f"    Expected value is {planet_id}"])

    def range_check_ships(self):
        for ship_id in sorted(self.ships):
            dat, dis = self.ships[ship_id]
            self.context = f"Ship {ship_id}"

            hull = self.specs.get_hull(dis.hull_type)
            if hull is not None:
                cargo, fuel, crew = hull.max_cargo, hull.max_fuel, hull.max_crew
            else:
                cargo, fuel, crew = UNIT_LIMIT, UNIT_LIMIT, MAXINT

            self.check_invariant("Owner", dat.owner, dis.owner, 1, NUM_PLAYERS)
            self.check_editable("Speed", dat.warp_factor, dis.warp_factor, 0, 9)
            self.check_editable("Waypoint DX", dat.waypoint_dx, dis.waypoint_dx, -3000, 3000)
            self.check_editable("Waypoint DY", dat.waypoint_dy, dis.waypoint_dy, -3000, 3000)
            self.check_invariant("X Position", dat.x, dis.x, 0, UNIT_LIMIT)
            self.check_invariant("Y Position", dat.y, dis.y, 0, UNIT_LIMIT)
            self.check_invariant("Engine type", dat.engine_type, dis.engine_type, 1, NUM_ENGINE_TYPES)
            self.check_invariant("Hull type", dat.hull_type, dis.hull_type, 1, NUM_HULL_TYPES)
            self.check_invariant("Beam type", dat.beam_type, dis.beam_type, 0, NUM_BEAM_TYPES)
            self.check_invariant("Beam count", dat.num_beams, dis.num_beams, 0, MAXINT)
            self.check_invariant("Bay count", dat.num_bays, dis.num_bays, 0, MAXINT)
            self.check_invariant("Torp type", dat.torpedo_type, dis.torpedo_type, 0, NUM_TORPEDO_TYPES)
            self.check_invariant("Torp launcher count", dat.num_launchers, dis.num_launchers, 0, MAXINT)
            self.check_editable("Ammo", dat.ammo, dis.ammo, 0, cargo)
            self.check_editable("Mission", dat.mission, dis.mission, 0, UNIT_LIMIT)
            self.check_editable("Enemy", dat.primary_enemy, dis.primary_enemy, 0, NUM_PLAYERS)
            self.check_editable("Mission Tow arg", dat.mission_tow_parameter,
                                dis.mission_tow_parameter, 0, UNIT_LIMIT)
            self.check_editable("Mission Intercept arg", dat.mission_intercept_parameter,
                                dis.mission_intercept_parameter, 0, UNIT_LIMIT)
            self.check_invariant("Damage", dat.damage, dis.damage, 0, 150)
            # Host sometimes gives more crew than the hull holds
            self.check_invariant("Crew", dat.crew, dis.crew, 0, crew if self.config.picky else MAXINT)
            self.check_editable("Colonists", dat.colonists, dis.colonists, 0, cargo)
            dat_ore, dis_ore = dat.ore, dis.ore
            self.check_editable("Neutronium", dat_ore[0], dis_ore[0], 0, fuel)
            self.check_editable("Tritanium", dat_ore[1], dis_ore[1], 0, cargo)
            self.check_editable("Duranium", dat_ore[2], dis_ore[2], 0, cargo)
            self.check_editable("Molybdenum", dat_ore[3], dis_ore[3], 0, cargo)
            self.check_editable("Supplies", dat.supplies, dis.supplies, 0, cargo)
            self.check_editable("Money", dat.money, dis.money, 0, UNIT_LIMIT)

            self.check_transfer("Unload", dat.unload, dis.unload)
            self.check_transfer_target("Unload", dat.unload, self.specs.planet_at(dat.x, dat.y))
            self.check_transfer("Transfer", dat.transfer, dis.transfer)

    # ------------------------------------------------------------------
    # Planet range check
    # ------------------------------------------------------------------

    def check_component(self, what, want, have, maximum):
        if want > maximum or want > have:
            lines = [f"RANGE: {self.context}",
                     f"    Attempt to build ship with {want} {what}"]
            if want > maximum:
                lines.append(f"    Maximum allowed by hull is {maximum}")
            if want > have:
                lines.append(f"    Available in storage are {have}")
            self.report('RANGE', f"Build order: {what}", lines)

    def _planet_fields(self, check, dat, dis):
        check("Mines", dat.num_mines, dis.num_mines, 0, UNIT_LIMIT)
        check("Factories", dat.num_factories, dis.num_factories, 0, UNIT_LIMIT)
        check("Defense", dat.num_defense_posts, dis.num_defense_posts, 0, UNIT_LIMIT)
        dat_ore, dis_ore = dat.mined_ore, dis.mined_ore
        for i, letter in enumerate('NTDM'):
            check(f"Mined {letter}", dat_ore[i], dis_ore[i], 0, RESOURCE_LIMIT)
        check("Colonists", dat.colonists, dis.colonists, 0, POPULATION_LIMIT)
        check("Supplies", dat.supplies, dis.supplies, 0, RESOURCE_LIMIT)
        check("Money", dat.money, dis.money, 0, RESOURCE_LIMIT)
        check("Colonist Tax", dat.colonist_tax, dis.colonist_tax, 0, 100)
        check("Native Tax", dat.native_tax, dis.native_tax, 0, 100)

    def range_check_planets(self):
        for planet_id in sorted(self.planets):
            dat, dis = self.planets[planet_id]
            self.context = f"Planet {planet_id}"
            self.check_invariant("Owner", dat.owner, dis.owner, 0, NUM_PLAYERS)

            if dis.owner == self.player:
                self._planet_fields(self.check_editable, dat, dis)
                if planet_id in self.bases:
                    self.check_editable("Base Build Order", dat.build_base_flag, dis.build_base_flag, 0, 0)
                    self.context = f"Starbase {planet_id}"
                    self.range_check_base(planet_id, dis.owner)
                    self.context = f"Planet {planet_id}"
            else:
                self.check_editable("Base Build Order", dat.build_base_flag, dis.build_base_flag, 0, 0)
                self._planet_fields(self.check_invariant, dat, dis)
                if planet_id in self.bases:
                    self.report('WARNING', "Starbase",
                                [f"WARNING: Planet {planet_id} has a starbase, although it is not played.",
                                 "    The starbase will be ignored by the check."])

            dat_ore, dis_ore = dat.ground_ore, dis.ground_ore
            for i, letter in enumerate('NTDM'):
                self.check_invariant(f"Ground {letter}", dat_ore[i], dis_ore[i], 0, RESOURCE_LIMIT)
            dat_density, dis_density = dat.ore_density, dis.ore_density
            for i, letter in enumerate('NTDM'):
                self.check_invariant(f"Density {letter}", dat_density[i], dis_density[i], 0, 100)
            self.check_invariant("Colonist Happiness", dat.colonist_happiness, dis.colonist_happiness, -300, 100)
            self.check_invariant("Native Happiness", dat.native_happiness, dis.native_happiness, -300, 100)
            self.check_invariant("Native Government", dat.native_government, dis.native_government, 0, 9)
            self.check_invariant("Natives", dat.natives, dis.natives, 0, POPULATION_LIMIT)
            self.check_invariant("Native Race", dat.native_race, dis.native_race, 0, 9)
            self.check_invariant("Temperature", dat.temperature_code, dis.temperature_code, 0, 100)

    def range_check_base(self, base_id, planet_owner):
        bdat, bdis = self.bases[base_id]
        owner = bdis.owner
        self.check_invariant("Base Owner", bdat.owner, owner, 1, NUM_PLAYERS)
        if owner != planet_owner:
            self.report('WARNING', "Base Owner",
                        [f"WARNING: Starbase {base_id} is not owned by the same player as the planet.",
                         "    For the check, we will ignore this anomaly."])

        dat_tech, dis_tech = bdat.tech_levels, bdis.tech_levels
        self.check_editable("Base Defense", bdat.num_base_defense_posts, bdis.num_base_defense_posts, 0, 200)
        self.check_editable("Engine Tech", dat_tech[ENGINE_TECH], dis_tech[ENGINE_TECH], 1, 10)
        self.check_editable("Hull Tech", dat_tech[HULL_TECH], dis_tech[HULL_TECH], 1, 10)
        self.check_editable("Beam Tech", dat_tech[BEAM_TECH], dis_tech[BEAM_TECH], 1, 10)
        self.check_editable("Torp Tech", dat_tech[TORPEDO_TECH], dis_tech[TORPEDO_TECH], 1, 10)
        self.check_editable("Fighters", bdat.num_fighters, bdis.num_fighters, 0, 60)
        self.check_editable("Shipyard Action", bdat.shipyard_action, bdis.shipyard_action, 0, 2)
        self.check_editable("Shipyard Ship", bdat.shipyard_id, bdis.shipyard_id, 0, NUM_SHIPS)
        self.check_editable("Base Mission", bdat.mission, bdis.mission, 0, 6)

        for label, field in (("Engine storage", 'engine_storage'), ("Beam storage", 'beam_storage'),
                             ("Launcher storage", 'launcher_storage'), ("Torpedo storage", 'torpedo_storage')):
            for i, (have, had) in enumerate(zip(getattr(bdat, field), getattr(bdis, field)), 1):
                self.check_editable(f"{label} #{i}", have, had, 0, MAXINT)

        dat_hulls, dis_hulls = bdat.hull_storage, bdis.hull_storage
        for slot in range(1, NUM_HULLS_PER_PLAYER + 1):
            if self.specs.get_truehull(owner, slot) == 0:
                self.check_editable(f"Unused hull storage #{slot}", dat_hulls[slot-1], dis_hulls[slot-1], 0, 0)
            else:
                self.check_editable(f"Hull storage #{slot}", dat_hulls[slot-1], dis_hulls[slot-1], 0, MAXINT)

        order, old_order = bdat.build_order, bdis.build_order
        self.check_editable("Build order: Hull", order.hull_index, old_order.hull_index, 0, NUM_HULLS_PER_PLAYER)
        self.check_editable("Build order: Engine", order.engine_type, old_order.engine_type, 0, NUM_ENGINE_TYPES)
        self.check_editable("Build order: Beam type", order.beam_type, old_order.beam_type, 0, NUM_BEAM_TYPES)
        self.check_editable("Build order: Torp type", order.launcher_type, old_order.launcher_type,
                            0, NUM_TORPEDO_TYPES)
        if order.zero != 0:
            self.report('WARNING', "Build order",
                        [f"WARNING: The last word of starbase {base_id}'s ship build order is not zero.",
                         "    This may cause bad things to happen in HOST!"])

        if not 0 < order.hull_index <= NUM_HULLS_PER_PLAYER:
            return
        hull = self.specs.get_hull(self.specs.get_truehull(owner, order.hull_index))
        if hull is None:
            self.report('RANGE', "Build order: Hull",
                        [f"RANGE: {self.context}", "    Build order refers to a non-existant hull type."])
            return
        if dat_hulls[order.hull_index - 1] <= 0:
            self.report('RANGE', "Build order: Hull",
                        [f"RANGE: {self.context}",
                         f"    Build order refers to hull slot {order.hull_index}, but",
                         "    that hull is not available in storage."])
        if order.engine_type <= NUM_ENGINE_TYPES:
            if order.engine_type <= 0:
                self.report('RANGE', "Build order: Engine",
                            [f"RANGE: {self.context}", "    Attempt to build ship without engine."])
            else:
                self.check_component("engines", hull.num_engines,
                                     bdat.engine_storage[order.engine_type - 1], hull.num_engines)
        if 0 < order.beam_type <= NUM_BEAM_TYPES:
            self.check_component("beams", order.num_beams,
                                 bdat.beam_storage[order.beam_type - 1], hull.max_beams)
        if 0 < order.launcher_type <= NUM_TORPEDO_TYPES:
            self.check_component("torpedo launchers", order.num_launchers,
                                 bdat.launcher_storage[order.launcher_type - 1], hull.max_launchers)

    # ------------------------------------------------------------------
    # Flow checks
    # ------------------------------------------------------------------

    def try_buy(self, corrected, what, current, original, cost, need_tech=0, have_tech=0):
        """Account for items bought since the original state."""
        if current < original:
            self.report('RANGE', what, [f"RANGE: {self.context}",
                                        f"    {original - current} {what} have been sold. This is not permitted."])
        if current > original and need_tech > have_tech:
            self.report('RANGE', what, [f"RANGE: {self.context}",
                                        f"    {what} has been built without sufficient tech.",
                                        f"    Required tech: {need_tech}, available tech: {have_tech}"])
        corrected.buy(current - original, *cost)

    def try_buy_tech(self, corrected, what, current, original):
        if current < original:
            self.report('RANGE', what, [f"RANGE: {self.context}",
                                        f"    {what} has been lowered. This is not permitted."])
        if 0 < current <= 10 and 0 < original <= 10:
            corrected.money -= TECH_COSTS[current - 1] - TECH_COSTS[original - 1]

    def _report_balance(self, header, rows):
        """Write one block for all mismatched fields; one fault per field."""
        self.log_divider()
        for line in header:
            self.log_line(line)
        for subject, lines in rows:
            for line in lines:
                self.log_line(line)
            self._record('BALANCE', subject, header + lines)

    def check_balance(self, rows):
        """rows: (label, now, start, expected). Returns True if all match."""
        mismatches = []
        for label, now, start, expected in rows:
            if expected != now:
                mismatches.append((label, [f"    {label:<15}: start {start}, now {now},",
                                           f"                     should be {expected}, difference {expected - now}"]))
        if mismatches:
            self._report_balance([f"BALANCE: {self.context}", "    Resources do not match."], mismatches)
        return not mismatches

    def check_free_space_balance(self, rows):
        """rows: (label, now, start). Returns True if nothing appeared."""
        appeared = [(label, [f"      {label:<15}: start {start}, now {now}, difference {now - start}"])
                    for label, now, start in rows if now > start]
        if appeared:
            self._report_balance([f"BALANCE: {self.context}", "    Resources appeared in free space:"], appeared)
        return not appeared

    @staticmethod
    def _ammo_rows(dat, dis, corrected=None):
        rows = []
        for i in range(NUM_TORPEDO_TYPES):
            row = (f"Torpedoes #{i+1}", dat.torpedoes[i], dis.torpedoes[i])
            rows.append(row if corrected is None else row + (corrected.torpedoes[i],))
        row = ("Fighters", dat.fighters, dis.fighters)
        rows.append(row if corrected is None else row + (corrected.fighters,))
        return rows

    def flow_check_orbits(self):
        """Resources at each own planet, its base and own ships in orbit must add up."""
        for planet_id in sorted(self.planets):
            pdat, pdis = self.planets[planet_id]
            if pdat.owner != self.player:
                continue
            position = self.planet_positions[planet_id - 1]
            x, y = position.x, position.y
            base = self.bases.get(planet_id)

            orbit = [ship_id for ship_id in sorted(self.ships)
                     if (self.ships[ship_id][1].x, self.ships[ship_id][1].y) == (x, y)
                     and self.ships[ship_id][1].owner == pdis.owner]
            note = " and orbit" if orbit else ""
            self.context = f"Planet {planet_id}{note}, player {pdis.owner} ({x},{y})"

            dat, dis = ResourceSummary(), ResourceSummary()
            dat.add_planet(pdat)
            dis.add_planet(pdis)
            if base is not None:
                dat.add_base(base[0])
                dis.add_base(base[1])
            num_ships = 0
            for ship_id in orbit:
                if ship_id in self.seen:
                    self.report('WARNING', f"Ship {ship_id}",
                                [f"WARNING: Ship {ship_id} seen again during orbits check.",
                                 "    This usually means that your planet X/Ys are not unique.",
                                 "    The ship will only be processed once."])
                    continue
                num_ships += 1
                self.seen.add(ship_id)
                dat.add_ship(self.ships[ship_id][0])
                dis.add_ship(self.ships[ship_id][1])

            for label, field, cutoff in STRUCTURE_LIMITS:
                current, original = getattr(pdat, field), getattr(pdis, field)
                if current > original:
                    limit = structure_limit(dis.colonists, cutoff)
                    if current > limit:
                        self.report('RANGE', label, [f"RANGE: {self.context}",
                                                     f"    Too many {label} have been built.",
                                                     f"    The limit is {limit}, but there are {current} {label}."])

            corrected = dis.copy()
            self._buy_planet_items(corrected, pdat, pdis)
            if base is not None:
                self._buy_base_items(corrected, dat, dis, base[0], base[1])

            if self.config.supply_sale and corrected.money < dat.money:
                shortfall = dat.money - corrected.money
                corrected.supplies -= shortfall
                corrected.money += shortfall

            rows = [(label, getattr(dat, attr), getattr(dis, attr), getattr(corrected, attr))
                    for attr, label in RESOURCE_FIELDS]
            if base is None:
                rows += self._ammo_rows(dat, dis, corrected)
            if not self.check_balance(rows):
                with_base = " with base" if base is not None else ""
                if num_ships == 0:
                    self.log_line(f"    This incident involves planet {planet_id}{with_base}.")
                else:
                    self.log_line(f"    This incident involves {plural(num_ships, 'ship')} "
                                  f"and planet {planet_id}{with_base}.")
                self.log_divider()

    def _buy_planet_items(self, corrected, pdat, pdis):
        cost = self.config.get_cost
        self.try_buy(corrected, "Mines", pdat.num_mines, pdis.num_mines, cost('mines'))
        self.try_buy(corrected, "Factories", pdat.num_factories, pdis.num_factories, cost('factories'))
        self.try_buy(corrected, "Defense Posts", pdat.num_defense_posts, pdis.num_defense_posts,
                     cost('defense_posts'))
        self.try_buy(corrected, "Starbase", pdat.build_base_flag, pdis.build_base_flag, cost('starbase'))

    def _buy_base_items(self, corrected, dat, dis, bdat, bdis):
        specs = self.specs
        tech = bdat.tech_levels
        self.try_buy(corrected, "Base Defense", bdat.num_base_defense_posts, bdis.num_base_defense_posts,
                     self.config.get_cost('base_defense'))

        def component_cost(c):
            return (c.tritanium, c.duranium, c.molybdenum, c.money, 0)

        for i, (have, had) in enumerate(zip(bdat.engine_storage, bdis.engine_storage), 1):
            engine = specs.engines[i-1]
            self.try_buy(corrected, f"Engine #{i}", have, had, component_cost(engine.cost),
                         engine.tech_level, tech[ENGINE_TECH])
        for i, (have, had) in enumerate(zip(bdat.beam_storage, bdis.beam_storage), 1):
            beam = specs.beams[i-1]
            self.try_buy(corrected, f"Beam #{i}", have, had, component_cost(beam.cost),
                         beam.tech_level, tech[BEAM_TECH])
        for i, (have, had) in enumerate(zip(bdat.launcher_storage, bdis.launcher_storage), 1):
            torpedo = specs.torpedoes[i-1]
            self.try_buy(corrected, f"Launcher #{i}", have, had, component_cost(torpedo.launcher_cost),
                         torpedo.tech_level, tech[TORPEDO_TECH])
        t, d, m, money, supplies = self.config.get_cost('torpedoes')
        for i in range(NUM_TORPEDO_TYPES):
            torpedo = specs.torpedoes[i]
            self.try_buy(corrected, f"Torpedo #{i+1}", dat.torpedoes[i], dis.torpedoes[i],
                         (t, d, m, money + torpedo.torpedo_cost, supplies),
                         torpedo.tech_level, tech[TORPEDO_TECH])
        if 0 < bdis.owner <= NUM_PLAYERS:
            dat_hulls, dis_hulls = bdat.hull_storage, bdis.hull_storage
            for slot in range(1, NUM_HULLS_PER_PLAYER + 1):
                number = specs.get_truehull(bdis.owner, slot)
                hull = specs.get_hull(number)
                if hull is not None:
                    self.try_buy(corrected, f"Hull #{number}", dat_hulls[slot-1], dis_hulls[slot-1],
                                 (hull.tritanium, hull.duranium, hull.molybdenum, hull.money, 0),
                                 hull.tech_level, tech[HULL_TECH])

        self.try_buy(corrected, "Fighters", dat.fighters, dis.fighters, self.config.get_cost('fighters'))

        old_tech = bdis.tech_levels
        for label, index in (("Engine Tech", ENGINE_TECH), ("Hull Tech", HULL_TECH),
                             ("Beam Tech", BEAM_TECH), ("Torpedo Tech", TORPEDO_TECH)):
            self.try_buy_tech(corrected, label, tech[index], old_tech[index])

    def flow_check_free_space(self):
        """Ships that were not at an own planet may not gain anything."""
        ship_ids = sorted(self.ships)
        for n, first_id in enumerate(ship_ids):
            if first_id in self.seen:
                continue
            first = self.ships[first_id][1]
            self.context = f"Ship {first_id} and other ships of player {first.owner} at ({first.x},{first.y})"
            self.seen.add(first_id)

            dat, dis = ResourceSummary(), ResourceSummary()
            dat.add_ship(self.ships[first_id][0])
            dis.add_ship(first)
            num_ships = 1
            for other_id in ship_ids[n+1:]:
                other = self.ships[other_id][1]
                if (other_id not in self.seen and (other.x, other.y) == (first.x, first.y)
                        and other.owner == first.owner):
                    self.seen.add(other_id)
                    num_ships += 1
                    dat.add_ship(self.ships[other_id][0])
                    dis.add_ship(other)

            rows = [(label, getattr(dat, attr), getattr(dis, attr)) for attr, label in RESOURCE_FIELDS]
            rows += self._ammo_rows(dat, dis)
            if not self.check_free_space_balance(rows):
                self.log_line(f"    This incident involves {plural(num_ships, 'ship')}.")
                self.log_divider()
