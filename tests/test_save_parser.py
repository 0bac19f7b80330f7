"""Tests for the save codec and save comparison."""

import pytest

from gmr_sync.core.chunks import Chunk
from gmr_sync.core.errors import (
    ChunkBoundaryNotFound,
    InvalidUtf8String,
    MalformedHeader,
    PlayerCountMismatch,
    SaveParseError,
    TruncatedSave,
    UnexpectedChunkCount,
    UnknownPlayerType,
)
from gmr_sync.core.filenames import turn_from_filename
from gmr_sync.core.save_parser import (
    Civ5Save,
    Header,
    PlayerType,
    SaveCodec,
    parse_save,
)

from conftest import build_header, build_save, lp, u32


def _save_with_chunks(*chunk_data: bytes) -> Civ5Save:
    header = Header(
        save=8, game="g", build="b", turn=1, starting_civ="", handicap="",
        era="", current_era="", game_speed="", world_size="", map_script="",
    )
    chunks = tuple(Chunk(id=i, offset=0, size=len(d), data=d) for i, d in enumerate(chunk_data))
    return Civ5Save(header=header, players=(), chunks=chunks)


class TestParse:
    """Tests for SaveCodec.parse() on well formed saves."""

    def test_header_fields(self):
        save = parse_save(build_save(turn=28))

        assert save.header.save == 8
        assert save.header.game == "Test Game"
        assert save.header.build == "1.0.3.279"
        assert save.header.turn == 28
        assert save.turn == 28
        assert save.header.starting_civ == "CIVILIZATION_POLAND"
        assert save.header.handicap == "HANDICAP_PRINCE"
        assert save.header.era == "ERA_ANCIENT"
        assert save.header.current_era == "ERA_CLASSICAL"
        assert save.header.game_speed == "GAMESPEED_STANDARD"
        assert save.header.world_size == "WORLDSIZE_SMALL"
        assert save.header.map_script == "Assets\\Maps\\Continents.lua"

    def test_players_pair_names_with_types(self):
        save = parse_save(build_save())

        assert [(p.name, p.player_type) for p in save.players] == [
            ("Casimir III", PlayerType.HUMAN),
            ("Harald", PlayerType.HUMAN),
            ("Montezuma", PlayerType.AI),
        ]

    def test_every_player_type_code(self):
        players = (("A", 1), ("B", 2), ("C", 3), ("D", 4))

        save = parse_save(build_save(players=players))

        assert [p.player_type for p in save.players] == [
            PlayerType.AI, PlayerType.DEAD, PlayerType.HUMAN, PlayerType.NONE,
        ]

    def test_non_ascii_names(self):
        save = parse_save(build_save(players=(("Dido ☀", 3), ("Ramkhamhaeng", 1))))
        assert save.players[0].name == "Dido ☀"

    def test_no_players(self):
        # An empty section would merge with the next one, so keep a padding byte
        save = parse_save(build_save(players=(), types_section=b"\x00"))
        assert save.players == ()

    def test_turn_zero(self):
        assert parse_save(build_save(turn=0)).header.turn == 0

    def test_chunk_count(self):
        save = parse_save(build_save())
        assert len(save.chunks) == 31

    def test_configurable_chunk_count(self):
        data = build_save(chunk_count=5)

        save = SaveCodec(chunk_count=5).parse(data)

        assert len(save.chunks) == 5
        assert len(save.players) == 3

    def test_chunk_count_too_small_for_player_table(self):
        with pytest.raises(ValueError):
            SaveCodec(chunk_count=2)

    def test_parse_file(self, tmp_path):
        path = tmp_path / "Casimir III_0028 BC-2320.Civ5Save"
        path.write_bytes(build_save(turn=28))

        assert SaveCodec().parse_file(path).header.turn == 28
        assert turn_from_filename(path.name) == 28


class TestParseErrors:
    """Malformed input raises a SaveParseError subclass, never anything else."""

    def test_bad_magic(self):
        with pytest.raises(MalformedHeader) as excinfo:
            parse_save(b"CIV4" + build_save()[4:])
        assert excinfo.value.offset == 0

    def test_empty_buffer(self):
        with pytest.raises(MalformedHeader):
            parse_save(b"")

    def test_header_cut_short(self):
        with pytest.raises(MalformedHeader):
            parse_save(build_header(28)[:20])

    def test_missing_markers(self):
        data = build_save()
        cut = data[:data.index(b"\x40\x00\x00\x00") + 4]

        with pytest.raises(ChunkBoundaryNotFound) as excinfo:
            parse_save(cut)
        assert excinfo.value.found == 1

    def test_unknown_player_type(self):
        with pytest.raises(UnknownPlayerType) as excinfo:
            parse_save(build_save(players=(("A", 3), ("B", 9))))
        assert excinfo.value.value == 9

    def test_player_type_zero(self):
        with pytest.raises(UnknownPlayerType):
            parse_save(build_save(players=(("A", 0),)))

    def test_fewer_types_than_names(self):
        data = build_save(types_section=u32(3) + u32(3))

        with pytest.raises(PlayerCountMismatch) as excinfo:
            parse_save(data)
        assert excinfo.value.names == 3
        assert excinfo.value.types == 2

    def test_invalid_utf8_name(self):
        names = u32(2) + b"\xff\xfe" + u32(0)

        with pytest.raises(InvalidUtf8String):
            parse_save(build_save(names_section=names))

    def test_name_longer_than_file(self):
        names = u32(100000) + b"ab"

        with pytest.raises(TruncatedSave):
            parse_save(build_save(names_section=names))

    def test_parse_file_reports_path(self, tmp_path):
        path = tmp_path / "broken.Civ5Save"
        path.write_bytes(b"nope")

        with pytest.raises(SaveParseError) as excinfo:
            SaveCodec().parse_file(path)
        assert excinfo.value.path == path
        assert str(path) in str(excinfo.value)

    @pytest.mark.parametrize("size", [0, 4, 50, 200, 400])
    def test_truncated_anywhere(self, size):
        with pytest.raises(SaveParseError):
            parse_save(build_save()[:size])


class TestDifferenceScore:
    """Tests for Civ5Save.difference_score()."""

    def test_identical_saves(self):
        a = parse_save(build_save(seed=3))
        b = parse_save(build_save(seed=3))

        assert a.difference_score(b) == 0
        assert a.difference_score(a) == 0

    def test_same_game_scores_lower_than_other_game(self):
        last = parse_save(build_save(turn=28, seed=1))
        same_game = parse_save(build_save(turn=29, seed=1))
        other_game = parse_save(build_save(turn=28, seed=2))

        assert same_game.difference_score(last) < same_game.difference_score(other_game)

    def test_counts_differing_bytes(self):
        a = _save_with_chunks(b"abcd", b"xy")
        b = _save_with_chunks(b"abzz", b"xy")

        assert a.difference_score(b) == 2

    def test_asymmetric_when_lengths_differ(self):
        longer = _save_with_chunks(b"abcd")
        shorter = _save_with_chunks(b"ab")

        assert longer.difference_score(shorter) == 2
        assert shorter.difference_score(longer) == 0

    def test_chunk_count_mismatch(self):
        with pytest.raises(UnexpectedChunkCount):
            _save_with_chunks(b"a", b"b").difference_score(_save_with_chunks(b"a"))


def test_length_prefixed_helper():
    assert lp("ab") == b"\x02\x00\x00\x00ab"
