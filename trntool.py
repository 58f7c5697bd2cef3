#!/usr/bin/env python3
"""
VGAP Turn Toolkit - Turn File Tool
Main CLI entry point.

Usage:
    python trntool.py dump player3.trn                      # List a turn file
    python trntool.py dump player3.trn --commands 1-5       # Only commands 1..5
    python trntool.py check --game games/g1 --player 3      # Check a turn
    python trntool.py check --game g1 --player 3 -r         # Check against player3.rst
    python trntool.py check --game g1 --player 3 --log c.html --html  # HTML log
    python trntool.py maketurn --game games/g1 --player 3   # Create player3.trn
    python trntool.py sort player3.trn                      # Sort commands
    python trntool.py delete-command player3.trn --index 4  # Remove a command
    python trntool.py attach player3.trn notes.txt          # Attach a file
    python trntool.py detach player3.trn --slot 0           # Remove an attachment
"""

import argparse
import shutil
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from engine.errors import TurnError
from engine.structures import DEFAULT_CHARSET, MAX_TRN_ATTACHMENTS
from engine.turnfile import TurnFile
from engine.registration import load_registration_key
from engine.maketurn import make_turn
from engine.check.checker import Checker
from engine.check.config import CheckerConfig, load_config
from engine.reports.turn_dump import dump_turn


def load_turn(path, charset=DEFAULT_CHARSET):
    """Load a turn file, printing an error and returning None on failure."""
    try:
        return TurnFile.load(path, charset=charset)
    except OSError as e:
        print(f"Error: cannot read {path}: {e.strerror}")
    except TurnError as e:
        print(f"Error: {e}")
    return None


def save_turn(turn, path, backup):
    """Rebuild and write a modified turn, keeping a .bak copy if asked."""
    path = Path(path)
    if backup:
        backup_path = path.with_suffix('.bak')
        shutil.copy2(str(path), str(backup_path))
        print(f"  Backed up {path.name} to {backup_path.name}")
    turn.update()
    turn.save(path)
    print(f"  Written {path} ({turn.num_commands} commands)")


def parse_index_list(text):
    """
    Parse "1,4,7-9" into a set of 0-based command indexes.
    Returns (indexes, error).
    """
    indexes = set()
    for part in text.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            if '-' in part:
                low, high = part.split('-', 1)
                low, high = int(low), int(high)
            else:
                low = high = int(part)
        except ValueError:
            return None, f"Invalid command index: {part}"
        if low < 1 or high < low:
            return None, f"Invalid command range: {part}"
        indexes.update(range(low - 1, high))
    return indexes, None


# ======================================================================
# INSPECTION
# ======================================================================

def cmd_dump(args):
    """Print a turn file in readable form."""
    turn = load_turn(args.file, args.charset)
    if turn is None:
        return 1

    indexes = None
    if args.commands:
        indexes, error = parse_index_list(args.commands)
        if error:
            print(f"Error: {error}")
            return 1

    lines = dump_turn(
        turn,
        show_header=not args.no_header,
        show_trailer=not args.no_trailer,
        show_comments=not args.no_comments,
        verify_checksum=not args.no_checksum,
        indexes=indexes,
    )
    for line in lines:
        print(line)
    return 0


def cmd_check(args):
    """Check a player's turn against the game data."""
    if args.config:
        config, errors = load_config(args.config)
        if errors:
            print(f"Error: invalid configuration {args.config}:")
            for error in errors:
                print(f"  - {error}")
            return 2
    else:
        config = CheckerConfig()

    # Command line flags override the configuration file
    for option in ('picky', 'result_mode', 'checksums', 'minus1_special', 'html'):
        if getattr(args, option):
            setattr(config, option, True)
    if args.no_supply_sale:
        config.supply_sale = False

    game_dir = Path(args.game)
    root_dir = Path(args.root) if args.root else game_dir

    log = None
    if args.log:
        log = open(args.log, 'w', encoding='utf-8')
    try:
        checker = Checker(game_dir, root_dir, args.player, config=config, log=log,
                          output=sys.stdout, error=sys.stderr)
        status = checker.run()
    finally:
        if log is not None:
            log.close()

    if args.summary:
        print(f"\n{len(checker.faults)} fault(s), {len(checker.warnings)} warning(s)")
        for fault in checker.faults:
            where = f"{fault.context}: " if fault.context else ''
            print(f"  {fault.kind:9s} {where}{fault.subject}")
    return status


# ======================================================================
# TURN CREATION AND EDITING
# ======================================================================

def cmd_maketurn(args):
    """Create turn files from the dat/dis files of a game directory."""
    key = None
    if args.registration:
        try:
            key, errors = load_registration_key(args.registration, args.charset)
        except OSError as e:
            print(f"Error: cannot read {args.registration}: {e.strerror}")
            return 1
        if errors:
            print(f"Error: invalid registration {args.registration}:")
            for error in errors:
                print(f"  - {error}")
            return 1

    command_lines = ()
    if args.commands:
        try:
            command_lines = Path(args.commands).read_text(encoding='utf-8').splitlines()
        except OSError as e:
            print(f"Error: cannot read {args.commands}: {e.strerror}")
            return 1

    status = 0
    results = make_turn(args.game, args.player, key=key, backup=not args.no_backup,
                        command_lines=command_lines)
    for result in results:
        print(f"Player {result['player']}:")
        if result['error']:
            print(f"  Error: {result['error']}")
            status = 1
        else:
            print(f"  {result['commands']} commands, turn {result['turn_number']}")
    return status


def cmd_sort(args):
    """Bring the commands of a turn file into canonical order."""
    turn = load_turn(args.file, args.charset)
    if turn is None:
        return 1
    turn.sort_commands()
    save_turn(turn, args.file, not args.no_backup)
    return 0


def cmd_delete_command(args):
    """Remove commands from a turn file."""
    turn = load_turn(args.file, args.charset)
    if turn is None:
        return 1
    indexes, error = parse_index_list(args.index)
    if error:
        print(f"Error: {error}")
        return 1
    missing = [i + 1 for i in sorted(indexes) if i >= turn.num_commands]
    if missing:
        print(f"Error: turn has {turn.num_commands} commands, cannot delete {missing}")
        return 1

    for index in sorted(indexes):
        print(f"  Deleting command {index + 1}: {turn.get_command_name(index)}")
        turn.delete_command(index)
    save_turn(turn, args.file, not args.no_backup)
    return 0


def cmd_attach(args):
    """Attach a file to a turn file (Taccom format)."""
    turn = load_turn(args.file, args.charset)
    if turn is None:
        return 1
    attachment = Path(args.attachment)
    try:
        data = attachment.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {attachment}: {e.strerror}")
        return 1

    name = args.name or attachment.name
    slot = turn.add_file(data, name)
    if slot is None:
        print(f"Error: all {MAX_TRN_ATTACHMENTS} attachment slots are in use")
        return 1
    print(f"  Attached {name} ({len(data)} bytes) in slot {slot}")
    save_turn(turn, args.file, not args.no_backup)
    return 0


def cmd_detach(args):
    """Remove (and optionally extract) an attachment."""
    turn = load_turn(args.file, args.charset)
    if turn is None:
        return 1
    entry = turn.get_file(args.slot)
    if entry is None:
        print(f"Error: attachment slot {args.slot} is empty")
        return 1

    name, data = entry
    if args.extract:
        target = Path(args.extract)
        if target.is_dir():
            target = target / name
        target.write_bytes(data)
        print(f"  Extracted {name} to {target}")
    turn.delete_file(args.slot)
    print(f"  Removed {name} from slot {args.slot}")
    save_turn(turn, args.file, not args.no_backup)
    return 0


# ======================================================================
# MAIN
# ======================================================================

def main():
    parser = argparse.ArgumentParser(
        description="VGA Planets turn file tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Typical workflow:
  1. maketurn --game DIR --player 3     Create player3.trn from ship3.dat etc.
  2. check --game DIR --player 3        Verify the turn before sending it
  3. dump DIR/player3.trn               Inspect what was sent

Checker exit status: 0 if the turn is valid, 1 if faults were found,
2 if the check could not be completed.
        """
    )
    parser.add_argument('--charset', default=DEFAULT_CHARSET, help='Game character set')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # --- dump ---
    sp = subparsers.add_parser('dump', help='List the contents of a turn file')
    sp.add_argument('file', help='Turn file (playerN.trn)')
    sp.add_argument('--commands', help='Only show these commands, e.g. "1,4,7-9"')
    sp.add_argument('--no-header', action='store_true', help='Omit the header')
    sp.add_argument('--no-trailer', action='store_true', help='Omit the trailer')
    sp.add_argument('--no-comments', action='store_true', help='Omit comments')
    sp.add_argument('--no-checksum', action='store_true', help='Do not verify the checksum')

    # --- check ---
    sp = subparsers.add_parser('check', help='Check a turn against the game data')
    sp.add_argument('--game', required=True, help='Game directory')
    sp.add_argument('--root', help='Directory with default spec files')
    sp.add_argument('--player', type=int, required=True, help='Player number (1-11)')
    sp.add_argument('--config', help='Checker configuration (YAML)')
    sp.add_argument('--log', help='Write the check log to this file')
    sp.add_argument('-r', '--result-mode', dest='result_mode', action='store_true',
                    help='Check playerN.trn against playerN.rst')
    sp.add_argument('-p', '--picky', action='store_true', help='Be picky about unit limits')
    sp.add_argument('-c', '--checksums', action='store_true', help='Validate dat/dis checksums')
    sp.add_argument('-m', '--minus1-special', dest='minus1_special', action='store_true',
                    help='Treat -1 in unit cargo as special')
    sp.add_argument('--no-supply-sale', action='store_true',
                    help='Do not cover money shortfalls by selling supplies')
    sp.add_argument('--html', action='store_true', help='Write the log file as HTML')
    sp.add_argument('--summary', action='store_true', help='Print a fault summary')

    # --- maketurn ---
    sp = subparsers.add_parser('maketurn', help='Create turn files from dat/dis files')
    sp.add_argument('--game', required=True, help='Game directory')
    sp.add_argument('--player', type=int, nargs='+', required=True, help='Player number(s)')
    sp.add_argument('--registration', help='Registration file (YAML or text)')
    sp.add_argument('--commands', help='Text file of host commands to send to yourself')
    sp.add_argument('--no-backup', action='store_true', help='Do not keep playerN.bak')

    # --- sort ---
    sp = subparsers.add_parser('sort', help='Sort the commands of a turn file')
    sp.add_argument('file', help='Turn file')
    sp.add_argument('--no-backup', action='store_true', help='Do not keep a .bak copy')

    # --- delete-command ---
    sp = subparsers.add_parser('delete-command', help='Remove commands from a turn file')
    sp.add_argument('file', help='Turn file')
    sp.add_argument('--index', required=True, help='Command number(s), e.g. "3" or "2,5-7"')
    sp.add_argument('--no-backup', action='store_true', help='Do not keep a .bak copy')

    # --- attach ---
    sp = subparsers.add_parser('attach', help='Attach a file to a turn file')
    sp.add_argument('file', help='Turn file')
    sp.add_argument('attachment', help='File to attach')
    sp.add_argument('--name', help='Name to store (max 12 characters)')
    sp.add_argument('--no-backup', action='store_true', help='Do not keep a .bak copy')

    # --- detach ---
    sp = subparsers.add_parser('detach', help='Remove an attachment from a turn file')
    sp.add_argument('file', help='Turn file')
    sp.add_argument('--slot', type=int, required=True, help='Attachment slot (0-9)')
    sp.add_argument('--extract', help='Save the attachment to this file or directory first')
    sp.add_argument('--no-backup', action='store_true', help='Do not keep a .bak copy')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        'dump': cmd_dump,
        'check': cmd_check,
        'maketurn': cmd_maketurn,
        'sort': cmd_sort,
        'delete-command': cmd_delete_command,
        'attach': cmd_attach,
        'detach': cmd_detach,
    }

    if args.command in commands:
        return commands[args.command](args)
    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
