import struct
import sys

import pytest

import trntool
from engine import commands
from engine.turnfile import TurnFile

from conftest import PLAYER, TIMESTAMP, make_ship, write_game, unchanged


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, 'argv', ['trntool.py'] + [str(arg) for arg in argv])
    return trntool.main()


def write_turn(path, ship_ids=(7,)):
    turn = TurnFile(PLAYER, TIMESTAMP)
    for ship_id in ship_ids:
        turn.add_command(commands.SHIP_CHANGE_SPEED, ship_id, struct.pack('<h', 9))
    turn.update()
    turn.save(path)
    return path


class TestIndexList:

    def test_ranges(self):
        assert trntool.parse_index_list("1,4,7-9") == ({0, 3, 6, 7, 8}, None)
        assert trntool.parse_index_list(" 2 , ") == ({1}, None)

    @pytest.mark.parametrize('text, error', [
        ("x", "Invalid command index: x"),
        ("0", "Invalid command range: 0"),
        ("5-3", "Invalid command range: 5-3"),
    ])
    def test_errors(self, text, error):
        assert trntool.parse_index_list(text) == (None, error)


class TestDump:

    def test_dump(self, tmp_path, monkeypatch, capsys):
        path = write_turn(tmp_path / "player3.trn")
        assert run(monkeypatch, 'dump', path, '--no-trailer') == 0
        out = capsys.readouterr().out
        assert "ShipChangeSpeed" in out
        assert "PlayerLog" not in out

    def test_bad_index(self, tmp_path, monkeypatch, capsys):
        path = write_turn(tmp_path / "player3.trn")
        assert run(monkeypatch, 'dump', path, '--commands', 'x') == 1
        assert "Error: Invalid command index: x" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, monkeypatch, capsys):
        assert run(monkeypatch, 'dump', tmp_path / "nothing.trn") == 1
        assert "Error: cannot read" in capsys.readouterr().out

    def test_broken_file(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "player3.trn"
        path.write_bytes(b'short')
        assert run(monkeypatch, 'dump', path) == 1
        assert capsys.readouterr().out.startswith("Error: ")


class TestCheck:

    def test_valid_turn(self, game_dir, monkeypatch, capsys):
        write_game(game_dir, ships=[unchanged(make_ship(1))])
        assert run(monkeypatch, 'check', '--game', game_dir, '--player', PLAYER, '--summary') == 0
        out = capsys.readouterr().out
        assert "Turn is OK." in out
        assert "0 fault(s), 0 warning(s)" in out

    def test_invalid_turn(self, game_dir, monkeypatch, capsys, tmp_path):
        ship = make_ship(1)
        moved = ship.copy()
        moved.x = 1
        write_game(game_dir, ships=[(moved, ship)])
        log = tmp_path / "check.log"
        assert run(monkeypatch, 'check', '--game', game_dir, '--player', PLAYER,
                   '--summary', '--log', log) == 1
        assert "INVALID   Ship 1: X Position" in capsys.readouterr().out
        assert "Turn is invalid." in log.read_text()

    def test_html_log(self, game_dir, monkeypatch, capsys, tmp_path):
        write_game(game_dir, ships=[unchanged(make_ship(1))])
        log = tmp_path / "check.html"
        assert run(monkeypatch, 'check', '--game', game_dir, '--player', PLAYER,
                   '--log', log, '--html') == 0
        assert "<b>Turn is OK.</b>" in log.read_text()
        assert "<b>" not in capsys.readouterr().out

    def test_bad_config(self, game_dir, monkeypatch, capsys, tmp_path):
        config = tmp_path / "checker.yaml"
        config.write_text("colour: blue\n")
        assert run(monkeypatch, 'check', '--game', game_dir, '--player', PLAYER, '--config', config) == 2
        assert "Unknown option: colour" in capsys.readouterr().out

    def test_aborted(self, game_dir, monkeypatch):
        assert run(monkeypatch, 'check', '--game', game_dir, '--player', PLAYER) == 2


class TestMaketurn:

    def test_maketurn(self, game_dir, monkeypatch, capsys):
        ship = make_ship(1)
        fast = ship.copy()
        fast.warp_factor = 6
        write_game(game_dir, ships=[(fast, ship)])
        assert run(monkeypatch, 'maketurn', '--game', game_dir, '--player', PLAYER) == 0
        assert "1 commands, turn 17" in capsys.readouterr().out
        assert TurnFile.load(game_dir / "player3.trn").num_commands == 1

    def test_missing_player(self, game_dir, monkeypatch, capsys):
        write_game(game_dir)
        assert run(monkeypatch, 'maketurn', '--game', game_dir, '--player', PLAYER, 5) == 1
        out = capsys.readouterr().out
        assert "Player 5:" in out
        assert (game_dir / "player3.trn").exists()

    def test_several_players_are_linked(self, game_dir, monkeypatch):
        write_game(game_dir)
        write_game(game_dir, player=4)
        assert run(monkeypatch, 'maketurn', '--game', game_dir, '--player', PLAYER, 4, '--no-backup') == 0
        three = TurnFile.load(game_dir / "player3.trn")
        four = TurnFile.load(game_dir / "player4.trn")
        assert three.dos_trailer.player_secret == four.dos_trailer.player_secret
        assert three.dos_trailer.player_secret[4 - 1] == four.dos_trailer.checksum

    def test_registration_and_commands(self, game_dir, monkeypatch, tmp_path):
        write_game(game_dir)
        key = tmp_path / "key.yaml"
        key.write_text("reg1: '4711'\nreg2: Alice\n")
        host_commands = tmp_path / "commands.txt"
        host_commands.write_text("allies add 4\n")
        assert run(monkeypatch, 'maketurn', '--game', game_dir, '--player', PLAYER,
                   '--registration', key, '--commands', host_commands) == 0
        turn = TurnFile.load(game_dir / "player3.trn")
        assert turn.get_command_code(0) == commands.SEND_MESSAGE

    def test_bad_registration(self, game_dir, monkeypatch, capsys, tmp_path):
        key = tmp_path / "key.txt"
        key.write_text("NAME Bob\n")
        assert run(monkeypatch, 'maketurn', '--game', game_dir, '--player', PLAYER,
                   '--registration', key) == 1
        assert "Error: invalid registration" in capsys.readouterr().out


class TestEditing:

    def test_delete_command(self, tmp_path, monkeypatch):
        path = write_turn(tmp_path / "player3.trn", (1, 2, 3))
        assert run(monkeypatch, 'delete-command', path, '--index', '2') == 0
        turn = TurnFile.load(path)
        assert [turn.get_command_id(i) for i in range(turn.num_commands)] == [1, 3]
        assert TurnFile.load(tmp_path / "player3.bak").num_commands == 3

    def test_delete_out_of_range(self, tmp_path, monkeypatch, capsys):
        path = write_turn(tmp_path / "player3.trn")
        assert run(monkeypatch, 'delete-command', path, '--index', '4') == 1
        assert "cannot delete [4]" in capsys.readouterr().out

    def test_sort(self, tmp_path, monkeypatch):
        path = write_turn(tmp_path / "player3.trn", (9, 1))
        assert run(monkeypatch, 'sort', path, '--no-backup') == 0
        turn = TurnFile.load(path)
        assert [turn.get_command_id(i) for i in range(turn.num_commands)] == [1, 9]
        assert not (tmp_path / "player3.bak").exists()

    def test_attach_and_detach(self, tmp_path, monkeypatch):
        path = write_turn(tmp_path / "player3.trn")
        notes = tmp_path / "notes.txt"
        notes.write_bytes(b'meet at Fomalhaut')

        assert run(monkeypatch, 'attach', path, notes) == 0
        turn = TurnFile.load(path)
        assert turn.get_file(0) == ("notes.txt", b'meet at Fomalhaut')
        assert turn.num_commands == 1

        out_dir = tmp_path / "out"
        out_dir.mkdir()
        assert run(monkeypatch, 'detach', path, '--slot', 0, '--extract', out_dir) == 0
        assert (out_dir / "notes.txt").read_bytes() == b'meet at Fomalhaut'
        assert TurnFile.load(path).num_files == 0

    def test_detach_empty_slot(self, tmp_path, monkeypatch, capsys):
        path = write_turn(tmp_path / "player3.trn")
        assert run(monkeypatch, 'detach', path, '--slot', 3) == 1
        assert "slot 3 is empty" in capsys.readouterr().out
