"""
Tests for attributed body classification and decoding.

Tests cover:
- Archive kind classification
- Native-first ordering with a fake ArchiveDecoder
- Plist and heuristic fallbacks
- Totality on empty and garbage input
- Batch/single equivalence
"""

import plistlib

import pytest

from relay.archive import ArchiveKind, classify, is_plist
from relay.decoder import AttributedBodyDecoder, DecodeSource, Plain, Undecodable
from relay.heuristics import HeuristicStrategy, extract_sequential, longest_readable_run
from relay.plist_fallback import PlistStrategy
from relay.utils import clean_text, is_obvious_metadata


# Captured from a real store; declares a 357-byte payload with a 3-byte length prefix
SAMPLE_SEQUENTIAL_HEX = (
    "040b73747265616d747970656481e803840140848484194e534d757461626c65"
    "41747472696275746564537472696e67008484124e5341747472696275746564"
    "537472696e67008484084e534f626a6563740085928484840f4e534d75746162"
    "6c65537472696e67018484084e53537472696e67019584012b81650154616920"
    "6b686f616e2063756120517579206b6861636820736170206865742e20536f61"
    "6e3a0a31206775692032313120646520636f6e672035352070687574206e6f69"
    "206d616e672028373934642f70292c2073752064756e672074726f6e67203135"
    "206e6761790a32206775692032313120646520636f6e67203332207068757420"
    "6e676f6169206d616e672028312e333639642f70292c2073752064756e672074"
    "726f6e67203135206e6761790a33206775692032313120646520636f6e672031"
    "30302074696e206e68616e206e6f69206d616e672028323330642f74696e292c"
    "2073752064756e672074726f6e67203135206e6761790a342067756920323131"
    "20646520636f6e672032302074696e206e68616e206e676f6169206d616e6720"
    "28333133642f74696e292c2073752064756e672074726f6e672037206e676179"
    "0a4368692074696574204c4820313830303830393820286d69656e2070686929"
    "2e868402694901816501928484840c4e5344696374696f6e6172790095840169"
    "01928498981d5f5f6b494d4d657373616765506172744174747269627574654e"
    "616d658692848484084e534e756d626572008484074e5356616c756500958401"
    "2a849b9b00868686"
)
SAMPLE_SEQUENTIAL = bytes.fromhex(SAMPLE_SEQUENTIAL_HEX)


def keyed_archive(text: str) -> bytes:
    """Binary keyed archive of an attributed string, laid out the way Foundation writes it."""
    return plistlib.dumps(
        {
            "$version": 100000,
            "$archiver": "NSKeyedArchiver",
            "$top": {"root": plistlib.UID(1)},
            "$objects": [
                "$null",
                {"NSString": plistlib.UID(2), "NSAttributes": plistlib.UID(3), "$class": plistlib.UID(4)},
                text,
                {"$class": plistlib.UID(5)},
                {"$classname": "NSAttributedString", "$classes": ["NSAttributedString", "NSObject"]},
                {"$classname": "NSDictionary", "$classes": ["NSDictionary", "NSObject"]},
            ],
        },
        fmt=plistlib.FMT_BINARY,
    )


class FakeArchiveDecoder:
    """ArchiveDecoder double answering from a lookup table."""

    def __init__(self, answers=None, fail=False):
        self.answers = answers or {}
        self.fail = fail
        self.single_calls = 0
        self.batch_calls = []

    def decode(self, blob):
        self.single_calls += 1
        if self.fail:
            raise RuntimeError("bridge exploded")
        return self.answers.get(blob)

    def decode_batch(self, blobs):
        self.batch_calls.append(list(blobs))
        if self.fail:
            raise RuntimeError("bridge exploded")
        return [self.answers.get(blob) for blob in blobs]


class TestClassify:
    """Test archive kind detection."""

    def test_empty(self):
        assert classify(b"") is ArchiveKind.EMPTY
        assert classify(None) is ArchiveKind.EMPTY

    def test_sequential(self):
        assert classify(SAMPLE_SEQUENTIAL) is ArchiveKind.SEQUENTIAL

    def test_keyed_binary_plist(self):
        assert classify(keyed_archive("Hello there")) is ArchiveKind.KEYED

    def test_plain_binary_plist(self):
        blob = plistlib.dumps({"text": "Hello there"}, fmt=plistlib.FMT_BINARY)
        assert classify(blob) is ArchiveKind.BINARY_PLIST
        assert is_plist(ArchiveKind.BINARY_PLIST)

    def test_xml_plist(self):
        blob = plistlib.dumps({"text": "Hello there"}, fmt=plistlib.FMT_XML)
        assert classify(blob) is ArchiveKind.XML_PLIST

    def test_unknown(self):
        assert classify(b"\x01\x02\x03 not an archive") is ArchiveKind.UNKNOWN
        assert not is_plist(ArchiveKind.UNKNOWN)


class TestNativeFirst:
    """Test that the native bridge is preferred when it answers."""

    def test_native_result_wins(self):
        blob = keyed_archive("Hello")
        decoder = AttributedBodyDecoder(FakeArchiveDecoder({blob: "Hello"}))

        result = decoder.decode(blob)

        assert result == Plain("Hello", DecodeSource.NATIVE)
        assert result.confident

    def test_native_output_is_cleaned(self):
        blob = b"\x04\x0bstreamtyped payload"
        decoder = AttributedBodyDecoder(FakeArchiveDecoder({blob: "\ufeffHi\x00 there     friend \x07"}))

        result = decoder.decode(blob)

        assert result.text == "Hi there  friend"

    def test_native_miss_falls_back_to_plist(self):
        blob = keyed_archive("Hello from a keyed archive")
        decoder = AttributedBodyDecoder(FakeArchiveDecoder())

        result = decoder.decode(blob)

        assert result == Plain("Hello from a keyed archive", DecodeSource.PLIST)

    def test_native_exception_is_contained(self):
        blob = keyed_archive("Still readable text")
        decoder = AttributedBodyDecoder(FakeArchiveDecoder(fail=True))

        result = decoder.decode(blob)

        assert result == Plain("Still readable text", DecodeSource.PLIST)


class TestFallbacks:
    """Test plist and heuristic strategies without a native decoder."""

    def test_sample_sequential_archive(self):
        result = AttributedBodyDecoder().decode(SAMPLE_SEQUENTIAL)

        assert isinstance(result, Plain)
        assert result.source is DecodeSource.HEURISTIC
        assert not result.confident
        assert result.text.startswith("Tai khoan cua Quy khach sap het. Soan:\n1 gui 211 de cong 55 phut")
        assert result.text.endswith("Chi tiet LH 18008098 (mien phi).")
        assert "NSDictionary" not in result.text

    def test_built_sequential_archive(self, make_sequential):
        assert extract_sequential(make_sequential("Hello")) == "Hello"

    def test_long_sequential_payload(self, make_sequential):
        text = "A fairly long message " * 10
        assert extract_sequential(make_sequential(text)) == text.strip()

    def test_xml_plist_text_key(self):
        blob = plistlib.dumps({"version": 1, "content": "Meeting moved to 3pm"}, fmt=plistlib.FMT_XML)

        result = AttributedBodyDecoder().decode(blob)

        assert result == Plain("Meeting moved to 3pm", DecodeSource.PLIST)

    def test_plist_metadata_only_is_not_text(self):
        blob = plistlib.dumps({"$classname": "NSString", "$classes": ["NSString", "NSObject"]},
                              fmt=plistlib.FMT_BINARY)

        assert PlistStrategy().try_decode(blob) is None

    def test_plist_uid_cycle_terminates(self):
        blob = plistlib.dumps(
            {
                "$archiver": "NSKeyedArchiver",
                "$top": {"root": plistlib.UID(1)},
                "$objects": ["$null", {"next": plistlib.UID(2)}, {"next": plistlib.UID(1)}],
            },
            fmt=plistlib.FMT_BINARY,
        )

        assert PlistStrategy().try_decode(blob) is None

    def test_printable_run(self):
        blob = b"\x00\x01\x02NSObject\x00\x91Hello there, this is plain text inside\x00\x86"
        assert longest_readable_run(blob) == "Hello there, this is plain text inside"

    def test_run_of_archive_keys_rejected(self):
        blob = b"\x00\x01Y$archiverX$objectsT$topX$version_\x00\x12"
        assert longest_readable_run(blob) is None

    @pytest.mark.parametrize("text", ["Hi", "Hello", "ok!"])
    def test_short_keyed_archive_is_undecodable(self, text):
        blob = keyed_archive(text)

        assert HeuristicStrategy().try_decode(blob) is None
        assert isinstance(AttributedBodyDecoder().decode(blob), Undecodable)

    def test_plist_without_text_is_undecodable(self):
        blob = plistlib.dumps({"flags": [1, 2, 3], "kind": "x"}, fmt=plistlib.FMT_BINARY)

        assert isinstance(AttributedBodyDecoder().decode(blob), Undecodable)


class TestTotality:
    """Test that decode never raises and always returns a DecodedText."""

    def test_empty_blob(self):
        result = AttributedBodyDecoder(placeholder="[Rich content]").decode(b"")

        assert result == Undecodable("[Rich content]", "empty")
        assert result.display == "[Rich content]"
        assert not result.confident

    def test_none_blob(self):
        assert isinstance(AttributedBodyDecoder().decode(None), Undecodable)

    @pytest.mark.parametrize("blob", [
        b"\x00" * 64,
        b"\x80\x81\x82\x83" * 8,
        b"bplist00\xff\xff\xff",
        b"<?xml version='1.0'?><plist><dict><key>",
        b"\x04\x0bstreamtyped\x84\x01+\x82\xff\xff\xff\x7f",
    ])
    def test_garbage_is_undecodable_or_plain(self, blob):
        result = AttributedBodyDecoder().decode(blob)
        assert isinstance(result, (Plain, Undecodable))

    def test_pure(self):
        decoder = AttributedBodyDecoder()
        assert decoder.decode(SAMPLE_SEQUENTIAL) == decoder.decode(SAMPLE_SEQUENTIAL)


class TestBatch:
    """Test decode_batch alignment and equivalence."""

    def test_single_native_call_per_batch(self, make_sequential):
        blobs = [make_sequential("First message"), keyed_archive("Second message"), make_sequential("Third one")]
        fake = FakeArchiveDecoder({blobs[0]: "First message"})
        decoder = AttributedBodyDecoder(fake)

        results = decoder.decode_batch([(10, blobs[0]), (11, blobs[1]), (12, blobs[2])])

        assert len(fake.batch_calls) == 1
        assert fake.single_calls == 0
        assert [item_id for item_id, _ in results] == [10, 11, 12]
        assert results[0][1] == Plain("First message", DecodeSource.NATIVE)
        assert results[1][1] == Plain("Second message", DecodeSource.PLIST)
        assert results[2][1] == Plain("Third one", DecodeSource.HEURISTIC)

    def test_matches_single_decode(self, make_sequential):
        blobs = [SAMPLE_SEQUENTIAL, keyed_archive("Keyed text here"), b"", b"\x00" * 32, make_sequential("Short")]
        decoder = AttributedBodyDecoder()

        batch = decoder.decode_batch(list(enumerate(blobs)))

        assert [result for _, result in batch] == [decoder.decode(blob) for blob in blobs]

    def test_empty_batch(self):
        fake = FakeArchiveDecoder()
        assert AttributedBodyDecoder(fake).decode_batch([]) == []
        assert fake.batch_calls == []

    def test_batch_bridge_failure_falls_back(self):
        blob = keyed_archive("Recovered by plist")
        decoder = AttributedBodyDecoder(FakeArchiveDecoder(fail=True))

        results = decoder.decode_batch([("a", blob)])

        assert results == [("a", Plain("Recovered by plist", DecodeSource.PLIST))]

    def test_short_bridge_answer_is_padded(self):
        class ShortDecoder(FakeArchiveDecoder):
            def decode_batch(self, blobs):
                return ["Only the first"]

        blobs = [b"\x04\x0bstreamtyped one", keyed_archive("Second via plist")]
        results = AttributedBodyDecoder(ShortDecoder()).decode_batch(list(enumerate(blobs)))

        assert results[0][1] == Plain("Only the first", DecodeSource.NATIVE)
        assert results[1][1] == Plain("Second via plist", DecodeSource.PLIST)


class TestTextHelpers:
    """Test cleanup and metadata filtering."""

    def test_clean_text(self):
        assert clean_text("  a\x01b   c\ufeff ") == "ab  c"
        assert clean_text(None) == ""

    @pytest.mark.parametrize("value", [
        "NSString", "$objects", "__kIMMessagePartAttributeName", "NSMutableAttributedString",
        "foo:bar", "kIM.attr", "com.example.x", "IMFILE",
    ])
    def test_metadata(self, value):
        assert is_obvious_metadata(value)

    @pytest.mark.parametrize("value", [
        "Thanks.", "See you at 5", "NS is short for NextStep", "3:30", "ok...", "see: the note",
    ])
    def test_not_metadata(self, value):
        assert not is_obvious_metadata(value)
