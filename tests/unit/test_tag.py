"""Unit tests for syltag.tag: header handling, splicing and whole-tag round trips."""

import pytest

from syltag.core import Frame, TagDecodeError, EncodeError, encode_text_frame, write_frame
from syltag.model import LyricGroup, CoverArt, MetadataModel, to_frames
from syltag.tag import (
    encode_syncsafe,
    decode_syncsafe,
    parse_header,
    strip_tags,
    tag_size,
    assemble_tag,
    read_tag,
    decode,
    encode,
)
from syltag.utils import Config

PAYLOAD = b'\xff\xfb\x90\x00' + b'\x00' * 100


def v23_tag(body: bytes, flags: int = 0) -> bytes:
    return b'ID3\x03\x00' + bytes([flags]) + encode_syncsafe(len(body)) + body


class TestSyncsafe:

    @pytest.mark.parametrize("value,data", [
        (0, b'\x00\x00\x00\x00'),
        (0x7F, b'\x00\x00\x00\x7f'),
        (0x80, b'\x00\x00\x01\x00'),
        (0x0FFFFFFF, b'\x7f\x7f\x7f\x7f'),
    ])
    def test_encode_decode(self, value, data):
        assert encode_syncsafe(value) == data
        assert decode_syncsafe(data) == value

    def test_encode_out_of_range(self):
        with pytest.raises(EncodeError):
            encode_syncsafe(1 << 28)

    def test_decode_rejects_high_bit(self):
        with pytest.raises(TagDecodeError):
            decode_syncsafe(b'\x00\x00\x00\x80')


class TestHeader:

    def test_no_tag(self):
        assert parse_header(PAYLOAD) is None
        assert parse_header(b'ID3') is None

    def test_parse(self):
        header = parse_header(v23_tag(b'\x00' * 20) + PAYLOAD)
        assert (header.major, header.revision, header.flags, header.size) == (3, 0, 0, 20)
        assert header.total_size == 30

    def test_v24_footer_counted(self):
        tag = b'ID3\x04\x00\x10' + encode_syncsafe(4) + b'\x00' * 4 + b'3DI\x04\x00\x10' + encode_syncsafe(4)
        header = parse_header(tag + PAYLOAD)
        assert header.total_size == 24

    def test_truncated(self):
        with pytest.raises(TagDecodeError):
            parse_header(v23_tag(b'\x00' * 20)[:15])

    def test_invalid_version(self):
        with pytest.raises(TagDecodeError):
            parse_header(b'ID3\xff\x00\x00\x00\x00\x00\x00')


class TestStripTags:

    def test_untagged_passthrough(self):
        assert strip_tags(PAYLOAD) == PAYLOAD

    def test_strips_tag(self):
        assert strip_tags(v23_tag(b'\x00' * 8) + PAYLOAD) == PAYLOAD

    def test_strips_stacked_tags(self):
        data = v23_tag(b'\x00' * 8) + b'ID3\x04\x00\x00' + encode_syncsafe(3) + b'abc' + PAYLOAD
        assert strip_tags(data) == PAYLOAD

    def test_malformed_header_left_in_place(self):
        data = b'ID3\x03\x00\x00\x80\x80\x80\x80' + PAYLOAD
        assert strip_tags(data) == data


class TestAssemble:

    def test_empty_model_is_header_plus_payload(self):
        out = encode({}, [LyricGroup()], None, PAYLOAD)
        assert out == b'ID3\x03\x00\x00\x00\x00\x00\x00' + PAYLOAD

    def test_size_is_sum_of_frames(self):
        frames = [encode_text_frame('TIT2', 'a'), encode_text_frame('TPE1', 'bb')]
        assert tag_size(frames) == (10 + 2) + (10 + 3)
        tag = assemble_tag(frames)
        assert tag[6:10] == encode_syncsafe(25)
        assert len(tag) == 10 + 25

    def test_output_length(self):
        fields = {'title': 'Song', 'artist': 'Artist'}
        groups = [LyricGroup(synced_entries=[('a', 1)])]
        frames = to_frames(fields, groups)
        out = encode(fields, groups, None, PAYLOAD)
        assert len(out) == 10 + sum(len(f) for f in frames) + len(PAYLOAD)
        assert out.endswith(PAYLOAD)

    def test_padding(self):
        tag = assemble_tag([encode_text_frame('TIT2', 'a')], padding=16)
        assert tag.endswith(b'\x00' * 16)
        assert read_tag(tag + PAYLOAD).fields == {'title': 'a'}

    def test_padding_from_config(self):
        Config.TAG_PADDING = 8
        assert len(assemble_tag([])) == 18

    def test_existing_tag_replaced_not_duplicated(self):
        first = encode({'title': 'old'}, [LyricGroup()], None, PAYLOAD)
        second = encode({'title': 'new'}, [LyricGroup()], None, first)
        assert second.count(b'ID3') == 1
        assert second.endswith(PAYLOAD)
        assert decode(second).fields == {'title': 'new'}

    def test_invalid_frame_raises(self):
        groups = [LyricGroup(language='xx', synced_entries=[('a', 1)])]
        with pytest.raises(EncodeError):
            encode({}, groups, None, PAYLOAD)


class TestRoundTrip:

    def test_full_model(self):
        fields = {'title': 'Song', 'artist': 'Artist', 'album': 'Album', 'albumartist': 'Various',
                  'year': '2024', 'genre': 'Pop', 'track': '3/12', 'comment': 'Nice'}
        groups = [
            LyricGroup('eng', '', [('World', 500), ('Hello', 1400)], ''),
            LyricGroup('jpn', 'カラオケ', [('こんにちは', 100)], '別の歌詞'),
        ]
        cover = CoverArt('image/png', b'\x89PNG\r\n\x1a\n\x00\x00data')
        decoded = decode(encode(fields, groups, cover, PAYLOAD))
        assert decoded.fields == fields
        assert decoded.groups == groups
        assert decoded.cover_art == cover

    def test_japanese_title(self):
        out = encode({'title': 'こんにちは世界'}, [LyricGroup()], None, PAYLOAD)
        assert decode(out).fields == {'title': 'こんにちは世界'}

    def test_japanese_lyrics_and_description(self):
        fields = {'title': 'どうしてすぐ知ってしまうの', 'artist': '歌手'}
        groups = [LyricGroup('jpn', '歌詞', [('どうしてすぐ知ってしまうの', 1200), ('こんにちは', 3400)], '')]
        out = encode(fields, groups, None, PAYLOAD)
        decoded = decode(out)
        assert decoded.fields == fields
        assert decoded.groups == groups
        assert out.endswith(PAYLOAD)

    def test_added_groups_survive_round_trip(self):
        model = MetadataModel()
        model.import_lrc("[00:01.00]first")
        model.add_group()
        model.import_lrc("[00:02.00]second")
        out = encode(model.fields, model.groups, None, PAYLOAD)
        decoded = decode(out)
        assert len(decoded.groups) == 2
        assert decoded.groups == model.groups
        assert [g.synced_entries for g in decoded.groups] == [[('first', 1000)], [('second', 2000)]]

    def test_duplicate_groups_not_encoded(self):
        groups = [LyricGroup('eng', '', [('a', 1)]), LyricGroup('eng', '', [('b', 2)])]
        with pytest.raises(EncodeError):
            encode({}, groups, None, PAYLOAD)

    def test_empty_group_list_decodes_to_default_group(self):
        decoded = decode(encode({'title': 't'}, [LyricGroup()], None, PAYLOAD))
        assert decoded.groups == [LyricGroup()]


class TestReadTag:

    def test_no_tag_empty_defaults(self):
        decoded = read_tag(PAYLOAD)
        assert decoded.fields == {}
        assert decoded.groups == [LyricGroup()]
        assert decoded.cover_art is None

    def test_other_version_rejected(self):
        tag = b'ID3\x04\x00\x00' + encode_syncsafe(0)
        with pytest.raises(TagDecodeError):
            read_tag(tag + PAYLOAD)
        assert decode(tag + PAYLOAD).fields == {}

    def test_corrupt_frame_gives_empty_metadata(self):
        tag = v23_tag(b'TIT2\x00\x00\x00\x50\x00\x00abc')
        with pytest.raises(TagDecodeError):
            read_tag(tag + PAYLOAD)
        decoded = decode(tag + PAYLOAD)
        assert decoded.fields == {}
        assert decoded.groups == [LyricGroup()]

    def test_unsynchronisation(self):
        body = write_frame(Frame('TIT2', b'\x00\xff'))
        unsynced = body.replace(b'\xff', b'\xff\x00')
        assert read_tag(v23_tag(unsynced, flags=0x80) + PAYLOAD).fields == {'title': '\xff'}

    def test_extended_header(self):
        ext = b'\x00\x00\x00\x06' + b'\x00' * 6
        body = ext + write_frame(encode_text_frame('TALB', 'x'))
        assert read_tag(v23_tag(body, flags=0x40) + PAYLOAD).fields == {'album': 'x'}
