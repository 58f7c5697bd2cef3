"""
VGAP Turn Toolkit - Turn File Set
Manages the turn files of one game directory.

Turn files of the same generation carry each other's checksums in the
player secret block of their DOS trailer, so they have to be finished
together:

    game_dir/
      player1.trn      <- written by another client earlier this turn
      player3.trn      <- created here
      player3.bak      <- previous version of player3.trn
"""

import shutil
from pathlib import Path

from engine.errors import TurnError
from engine.structures import NUM_PLAYERS, DEFAULT_CHARSET, make_timestamp
from engine.turnfile import TurnFile, WINPLAN_FEATURE


class FileSet:
    """A set of turn files being generated for one game directory."""

    def __init__(self, directory, charset=DEFAULT_CHARSET):
        self.directory = Path(directory)
        self.charset = charset
        self.turns = {}
        self.generation = None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(self, player, timestamp, turn_number, key=None):
        """
        Create the turn file for a player.
        All turns of one set must belong to the same host generation.
        """
        generation = (make_timestamp(timestamp), turn_number)
        if self.generation is not None and self.generation != generation:
            raise TurnError(f"Player {player}: turn {turn_number} does not belong to this file set")
        self.generation = generation

        turn = TurnFile(player, timestamp, charset=self.charset,
                        name=str(self.get_turn_path(player)))
        turn.set_features({WINPLAN_FEATURE})
        if key is not None:
            turn.set_registration_key(key, turn_number)
        self.turns[player] = turn
        return turn

    def get_turn_path(self, player):
        return self.directory / f"player{player}.trn"

    def get_backup_path(self, player, template="player{player}.bak"):
        return self.directory / template.format(player=player)

    # ------------------------------------------------------------------
    # Trailers
    # ------------------------------------------------------------------

    def update_trailers(self):
        """
        Link all turns of this generation.

        Turn files already in the directory contribute their checksum if
        they belong to the same generation; turns of this set override them.
        Returns the player secret block that was stored.
        """
        for turn in self.turns.values():
            if turn.dirty:
                turn.update()

        secret = [0] * NUM_PLAYERS
        for player in range(1, NUM_PLAYERS + 1):
            path = self.get_turn_path(player)
            if player in self.turns or not path.exists():
                continue
            try:
                sibling = TurnFile.load(path, full_parse=False, charset=self.charset)
            except (OSError, TurnError) as e:
                print(f"  Skipping {path.name}: {e}")
                continue
            if self.is_same_generation(sibling):
                secret[player - 1] = sibling.dos_trailer.checksum

        for player, turn in self.turns.items():
            if 1 <= player <= NUM_PLAYERS:
                secret[player - 1] = turn.dos_trailer.checksum

        for turn in self.turns.values():
            turn.set_player_secret(secret)
            turn.update_trailer()
        return secret

    def is_same_generation(self, sibling):
        """
        A turn file on disk is a sibling if it has the timestamp of this set
        and, where its trailer tells, the same turn number.
        """
        if self.generation is None:
            return False
        timestamp, turn_number = self.generation
        if sibling.timestamp != timestamp:
            return False
        sibling_turn = sibling.try_get_turn_number()
        return sibling_turn == 0 or sibling_turn == turn_number

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def save_all(self, backup=True, backup_template="player{player}.bak"):
        """
        Write all turn files, optionally keeping a copy of each old file.
        Returns the list of written paths.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        written = []
        for player in sorted(self.turns):
            turn = self.turns[player]
            path = self.get_turn_path(player)
            if backup and path.exists():
                backup_path = self.get_backup_path(player, backup_template)
                shutil.copy2(str(path), str(backup_path))
                print(f"  Backed up {path.name} to {backup_path.name}")
            turn.save(path)
            print(f"  Turn file for player {player} written to {path}")
            written.append(path)
        return written
