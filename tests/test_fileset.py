import struct

import pytest

from engine import commands
from engine.errors import TurnError
from engine.fileset import FileSet
from engine.registration import RegistrationKey
from engine.turnfile import TurnFile, WINPLAN_FEATURE

from conftest import TIMESTAMP, TURN_NUMBER


OTHER_TIMESTAMP = b"03-08-202412:00:00"


def write_sibling(directory, player, timestamp=TIMESTAMP, turn_number=None):
    turn = TurnFile(player, timestamp)
    turn.add_command(commands.SHIP_CHANGE_SPEED, player, struct.pack('<h', player))
    if turn_number is not None:
        turn.set_registration_key(RegistrationKey(), turn_number)
    turn.update()
    turn.save(directory / f"player{player}.trn")
    return turn.dos_trailer.checksum


class TestFileSet:

    def test_create(self, tmp_path):
        fileset = FileSet(tmp_path)
        turn = fileset.create(2, TIMESTAMP, TURN_NUMBER, RegistrationKey())
        assert turn.player == 2
        assert turn.features == {WINPLAN_FEATURE}
        assert fileset.turns == {2: turn}
        assert fileset.get_turn_path(2) == tmp_path / "player2.trn"

    def test_generation_must_match(self, tmp_path):
        fileset = FileSet(tmp_path)
        fileset.create(2, TIMESTAMP, TURN_NUMBER)
        with pytest.raises(TurnError):
            fileset.create(3, TIMESTAMP, TURN_NUMBER + 1)
        with pytest.raises(TurnError):
            fileset.create(3, OTHER_TIMESTAMP, TURN_NUMBER)

    def test_own_turns_share_secret(self, tmp_path):
        fileset = FileSet(tmp_path)
        first = fileset.create(2, TIMESTAMP, TURN_NUMBER)
        second = fileset.create(5, TIMESTAMP, TURN_NUMBER)
        second.add_command(commands.SHIP_CHANGE_SPEED, 1, struct.pack('<h', 4))

        secret = fileset.update_trailers()

        assert not first.dirty and not second.dirty
        assert secret[1] == first.dos_trailer.checksum
        assert secret[4] == second.dos_trailer.checksum
        assert secret.count(0) == 9
        assert first.dos_trailer.player_secret == secret
        assert second.dos_trailer.player_secret == secret
        # The trailer rewrite does not change the checksum
        assert first.compute_turn_checksum() == first.dos_trailer.checksum

    def test_siblings_on_disk(self, tmp_path):
        same = write_sibling(tmp_path, 4)
        write_sibling(tmp_path, 6, OTHER_TIMESTAMP)
        (tmp_path / "player8.trn").write_bytes(b'garbage')

        fileset = FileSet(tmp_path)
        fileset.create(2, TIMESTAMP, TURN_NUMBER)
        secret = fileset.update_trailers()

        assert secret[3] == same
        assert secret[5] == 0
        assert secret[7] == 0

    def test_sibling_of_other_turn_is_not_linked(self, tmp_path):
        current = write_sibling(tmp_path, 4, turn_number=TURN_NUMBER)
        write_sibling(tmp_path, 5, turn_number=TURN_NUMBER - 1)

        fileset = FileSet(tmp_path)
        fileset.create(2, TIMESTAMP, TURN_NUMBER)
        secret = fileset.update_trailers()

        assert secret[3] == current
        assert secret[4] == 0

    def test_own_turn_overrides_file_on_disk(self, tmp_path):
        write_sibling(tmp_path, 2)
        fileset = FileSet(tmp_path)
        turn = fileset.create(2, TIMESTAMP, TURN_NUMBER)
        secret = fileset.update_trailers()
        assert secret[1] == turn.dos_trailer.checksum

    def test_save_all(self, tmp_path, capsys):
        old = write_sibling(tmp_path, 3)
        old_bytes = (tmp_path / "player3.trn").read_bytes()

        fileset = FileSet(tmp_path)
        fileset.create(3, TIMESTAMP, TURN_NUMBER)
        fileset.update_trailers()
        paths = fileset.save_all()

        assert paths == [tmp_path / "player3.trn"]
        assert (tmp_path / "player3.bak").read_bytes() == old_bytes
        saved = TurnFile.load(paths[0])
        assert saved.num_commands == 0
        assert saved.dos_trailer.checksum != old
        assert "player3.bak" in capsys.readouterr().out

    def test_save_without_backup(self, tmp_path):
        write_sibling(tmp_path, 3)
        fileset = FileSet(tmp_path)
        fileset.create(3, TIMESTAMP, TURN_NUMBER)
        fileset.update_trailers()
        fileset.save_all(backup=False)
        assert not (tmp_path / "player3.bak").exists()

    def test_linked_files_written_together(self, tmp_path):
        fileset = FileSet(tmp_path)
        for player in (1, 2):
            fileset.create(player, TIMESTAMP, TURN_NUMBER)
        fileset.update_trailers()
        fileset.save_all()

        one = TurnFile.load(tmp_path / "player1.trn")
        two = TurnFile.load(tmp_path / "player2.trn")
        assert one.dos_trailer.player_secret[1] == two.dos_trailer.checksum
        assert two.dos_trailer.player_secret[0] == one.dos_trailer.checksum
