import struct

import pytest

from engine import commands
from engine.errors import TurnError, FormatError, FileTooShortError
from engine.registration import RegistrationKey
from engine.structures import TurnHeader, TurnDosTrailer, TurnWindowsTrailer, TaccomHeader, byte_sum
from engine.turnfile import (
    TurnFile, WINPLAN_FEATURE, TACCOM_FEATURE, DOS_SIGNATURE,
    decode_message_text, encode_message_text,
)

from conftest import PLAYER, TIMESTAMP


def sample_turn():
    turn = TurnFile(PLAYER, TIMESTAMP)
    turn.add_command(commands.SHIP_CHANGE_SPEED, 7, struct.pack('<h', 9))
    turn.add_command(commands.PLANET_CHANGE_MINES, 12, struct.pack('<h', 40))
    turn.add_command(commands.SHIP_CHANGE_FC, 7, b'abc')
    turn.update()
    return turn


class TestNewTurn:

    def test_new_turn_is_dirty(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        assert turn.dirty
        with pytest.raises(TurnError):
            turn.to_bytes()

    def test_header_fields(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        assert turn.player == PLAYER
        assert turn.timestamp == TIMESTAMP
        assert turn.num_commands == 0
        assert WINPLAN_FEATURE in turn.features

    def test_empty_turn_layout(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.update()
        data = turn.to_bytes()
        assert len(data) == TurnHeader.SIZE + TurnWindowsTrailer.SIZE + TurnDosTrailer.SIZE
        header = TurnHeader(data)
        assert header.time_checksum == byte_sum(TIMESTAMP)
        assert header.num_commands == 0

    def test_timestamp_must_be_18_bytes(self):
        with pytest.raises(ValueError):
            TurnFile(PLAYER, b"too short")


class TestCommands:

    def test_accessors(self):
        turn = sample_turn()
        assert turn.num_commands == 3
        assert turn.get_command_code(0) == commands.SHIP_CHANGE_SPEED
        assert turn.get_command_id(0) == 7
        assert turn.get_command_type(1) == commands.PLANET
        assert turn.get_command_name(2) == 'ShipChangeFc'
        assert turn.get_command_length(2) == 3
        assert turn.get_command_data(2) == b'abc'

    def test_out_of_range_index(self):
        turn = sample_turn()
        for accessor in (turn.get_command_code, turn.get_command_id, turn.get_command_type,
                         turn.get_command_position, turn.get_command_length, turn.get_command_data):
            assert accessor(3) is None
            assert accessor(-1) is None

    def test_first_command_follows_offset_table(self):
        turn = sample_turn()
        assert turn.get_command_position(0) == TurnHeader.SIZE + 1 + 4*3

    def test_sort_order(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.send_message(PLAYER, 4, "hello")
        turn.add_command(commands.BASE_CHANGE_MISSION, 3, struct.pack('<h', 1))
        turn.add_command(commands.SHIP_CHANGE_SPEED, 9, struct.pack('<h', 5))
        turn.add_command(commands.PLANET_CHANGE_FC, 3, b'xyz')
        turn.add_command(commands.SHIP_CHANGE_FC, 9, b'abc')
        turn.add_command(commands.SHIP_CHANGE_SPEED, 2, struct.pack('<h', 5))
        turn.sort_commands()

        order = [(turn.get_command_code(i), turn.get_command_id(i)) for i in range(turn.num_commands)]
        assert order == [
            (commands.SHIP_CHANGE_SPEED, 2),
            (commands.SHIP_CHANGE_FC, 9),
            (commands.SHIP_CHANGE_SPEED, 9),
            (commands.PLANET_CHANGE_FC, 3),
            (commands.BASE_CHANGE_MISSION, 3),
            (commands.SEND_MESSAGE, 5),
        ]

    def test_run_length(self):
        turn = sample_turn()
        turn.sort_commands()
        assert turn.find_command_run_length(0) == 2
        assert turn.find_command_run_length(2) == 1
        assert turn.find_command_run_length(5) == 0

    def test_delete_keeps_other_commands(self):
        turn = sample_turn()
        kept = [(turn.get_command_code(i), turn.get_command_id(i), turn.get_command_data(i))
                for i in (0, 2)]

        turn.delete_command(1)
        assert turn.dirty
        # Index stays valid until the next update
        assert turn.get_command_code(1) == 0
        assert turn.get_command_code(2) == commands.SHIP_CHANGE_FC

        turn.update()
        assert turn.num_commands == 2
        assert [(turn.get_command_code(i), turn.get_command_id(i), turn.get_command_data(i))
                for i in range(2)] == kept

    def test_update_drops_undefined_commands(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.add_command(commands.SHIP_CHANGE_SPEED, 1, struct.pack('<h', 3))
        turn.add_command(99, 1)
        turn.update()
        assert turn.num_commands == 1


class TestMessages:

    def test_message_encoding(self):
        encoded = encode_message_text("Hi\nthere")
        assert encoded[0] == ord('H') + 13
        assert encoded[2] == ord('\r') + 13
        assert decode_message_text(encoded) == "Hi\nthere"

    def test_send_message(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.send_message(PLAYER, 0, "Hello")
        assert turn.get_command_code(0) == commands.SEND_MESSAGE
        assert turn.get_command_id(0) == 5
        assert turn.get_command_length(0) == 9
        data = turn.get_command_data(0)
        assert struct.unpack('<hh', data[:4]) == (PLAYER, 12)
        assert decode_message_text(data[4:]) == "Hello"

    def test_thost_allies(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.send_thost_allies("ff4ee5", 20, "abc")
        assert turn.num_commands == 3
        assert [turn.get_command_data(i) for i in range(3)] == [b'ff4', b'ee5', b'abc']
        assert all(turn.get_command_code(i) == commands.SHIP_CHANGE_FC for i in range(3))


class TestRoundTrip:

    def test_parse_and_write_is_identical(self):
        data = sample_turn().to_bytes()
        parsed = TurnFile.parse(data)
        assert not parsed.dirty
        assert parsed.to_bytes() == data
        assert parsed.num_commands == 3
        assert parsed.get_command_data(0) == struct.pack('<h', 9)

    def test_update_is_idempotent(self):
        turn = TurnFile.parse(sample_turn().to_bytes())
        turn.update()
        first = turn.to_bytes()
        turn.update()
        assert turn.to_bytes() == first
        assert turn.num_commands == 3

    def test_save_and_load(self, tmp_path):
        turn = sample_turn()
        path = turn.save(tmp_path / "player3.trn")
        loaded = TurnFile.load(path)
        assert loaded.to_bytes() == turn.to_bytes()
        assert loaded.name == str(path)

    def test_write_to_stream(self, tmp_path):
        turn = sample_turn()
        with open(tmp_path / "out.trn", 'wb') as stream:
            turn.write(stream)
        assert (tmp_path / "out.trn").read_bytes() == turn.to_bytes()


class TestTrailers:

    def test_dos_checksum(self):
        turn = sample_turn()
        assert turn.dos_trailer.checksum == turn.compute_turn_checksum()
        assert turn.dos_trailer.signature == DOS_SIGNATURE

    def test_winplan_version(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.set_version(7)
        turn.update()
        parsed = TurnFile.parse(turn.to_bytes())
        assert WINPLAN_FEATURE in parsed.features
        assert parsed.version == 7

    def test_invalid_version(self):
        with pytest.raises(ValueError):
            TurnFile(PLAYER, TIMESTAMP).set_version(100)

    def test_turn_number_from_registration(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.set_registration_key(RegistrationKey("Serial 1", "Registered"), 17)
        turn.update()
        parsed = TurnFile.parse(turn.to_bytes())
        assert parsed.try_get_turn_number() == 17
        assert RegistrationKey.from_key(parsed.dos_trailer.registration_key).get_line(1) == "Serial 1"

    def test_dos_format_has_no_turn_number(self):
        turn = TurnFile(PLAYER, TIMESTAMP)
        turn.set_features(set())
        turn.set_registration_key(RegistrationKey(), 17)
        turn.update()
        data = turn.to_bytes()
        assert len(data) == TurnHeader.SIZE + TurnDosTrailer.SIZE
        parsed = TurnFile.parse(data)
        assert parsed.features == set()
        assert parsed.try_get_turn_number() == 0

    def test_player_secret(self):
        turn = sample_turn()
        secret = list(range(1, 12))
        turn.set_player_secret(secret)
        turn.update_trailer()
        parsed = TurnFile.parse(turn.to_bytes())
        assert parsed.dos_trailer.player_secret == secret
        assert parsed.dos_trailer.checksum == turn.dos_trailer.checksum


class TestAttachments:

    def test_attach_file(self):
        turn = sample_turn()
        assert turn.add_file(b'hello world', 'notes.txt') == 0
        turn.update()
        data = turn.to_bytes()
        assert data.startswith(b'NCC1701AD9')

        parsed = TurnFile.parse(data)
        assert TACCOM_FEATURE in parsed.features
        assert parsed.num_files == 1
        assert parsed.get_file(0) == ('notes.txt', b'hello world')
        assert parsed.num_commands == 3
        assert parsed.get_command_data(2) == b'abc'
        assert parsed.to_bytes() == data

    def test_attachment_before_turn(self):
        turn = sample_turn()
        turn.add_file(b'first', 'a.txt')
        turn.add_file(b'second', 'b.txt')
        turn.turn_placement = 1
        turn.update()
        parsed = TurnFile.parse(turn.to_bytes())
        assert parsed.turn_placement == 1
        assert parsed.taccom_header.turn_address == TaccomHeader.SIZE + len(b'first') + 1
        assert parsed.get_file(1) == ('b.txt', b'second')
        assert parsed.dos_trailer.checksum == parsed.compute_turn_checksum()

    def test_delete_file(self):
        turn = sample_turn()
        turn.add_file(b'x', 'x.dat')
        turn.update()
        turn.delete_file(0)
        turn.update()
        parsed = TurnFile.parse(turn.to_bytes())
        assert parsed.num_files == 0
        assert parsed.get_file(0) is None

    def test_all_slots_used(self):
        turn = sample_turn()
        for i in range(10):
            assert turn.add_file(b'x', f'f{i}') == i
        assert turn.add_file(b'x', 'overflow') is None


class TestBadFiles:

    def test_too_short(self):
        with pytest.raises(FileTooShortError):
            TurnFile.parse(bytes(100))

    def test_invalid_command_count(self):
        data = bytearray(sample_turn().to_bytes())
        struct.pack_into('<i', data, 2, -5)
        with pytest.raises(FormatError) as info:
            TurnFile.parse(data)
        assert "command count" in str(info.value)

    def test_count_larger_than_file(self):
        data = bytearray(sample_turn().to_bytes())
        struct.pack_into('<i', data, 2, 1000)
        with pytest.raises(FileTooShortError):
            TurnFile.parse(data)

    def test_bad_offset(self):
        data = bytearray(sample_turn().to_bytes())
        struct.pack_into('<i', data, TurnHeader.SIZE + 1, len(data) + 50)
        with pytest.raises(FormatError):
            TurnFile.parse(data)

    def test_header_only_parse(self):
        data = sample_turn().to_bytes()
        turn = TurnFile.parse(data, full_parse=False)
        assert turn.num_commands == 0
        assert turn.player == PLAYER
        assert turn.timestamp == TIMESTAMP
        assert turn.dos_trailer.checksum == TurnFile.parse(data).dos_trailer.checksum
        with pytest.raises(TurnError):
            turn.to_bytes()
