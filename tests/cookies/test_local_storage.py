import os
from pathlib import Path

from usageprobe.cookies.chromium import ChromiumBrowser, ChromiumProfile
from usageprobe.cookies.local_storage import (
    find_local_storage_tokens,
    last_token_match,
    segment_files,
)

MARKER = "workos:refresh-token"
BROWSER = ChromiumBrowser("Test", "chrome", "Test/mac", "test/linux")


def _leveldb(tmp_path: "Path", name: "str") -> "tuple[ChromiumProfile, Path]":
    profile = ChromiumProfile(browser=BROWSER, path=tmp_path / name)
    leveldb = profile.local_storage_dir
    leveldb.mkdir(parents=True)
    return profile, leveldb


class TestLastTokenMatch:
    def test_takes_last_write(self) -> "None":
        contents = (
            f"\x00_https://app\x00\x01{MARKER}\x01\x00old_token_value_aaaaaaaa"
            f"\x00junk\x01{MARKER}\x02new_token_value_bbbbbbbbb\x00"
        )
        assert last_token_match(contents, MARKER) == "new_token_value_bbbbbbbbb"

    def test_short_values_are_ignored(self) -> "None":
        assert last_token_match(f"{MARKER}\x00short", MARKER) is None

    def test_marker_absent(self) -> "None":
        assert last_token_match("nothing here", MARKER) is None


class TestSegmentFiles:
    def test_newest_first_and_filtered(self, tmp_path: "Path") -> "None":
        _, leveldb = _leveldb(tmp_path, "Default")
        old = leveldb / "000001.ldb"
        new = leveldb / "000002.log"
        old.write_bytes(b"a")
        new.write_bytes(b"b")
        (leveldb / "MANIFEST-000001").write_bytes(b"c")
        os.utime(old, (1_000_000, 1_000_000))
        os.utime(new, (2_000_000, 2_000_000))
        assert segment_files(leveldb) == [new, old]


class TestFindLocalStorageTokens:
    def test_one_token_per_profile(self, tmp_path: "Path") -> "None":
        default, default_db = _leveldb(tmp_path, "Default")
        other, _ = _leveldb(tmp_path, "Profile 1")
        (default_db / "000003.log").write_bytes(
            MARKER.encode() + b"\x00\x01" + b"t" * 32 + b"\xff\xfe"
        )
        tokens = find_local_storage_tokens([default, other], MARKER)
        assert len(tokens) == 1
        assert tokens[0].token == "t" * 32
        assert tokens[0].source_label == "Test Default"
        assert tokens[0].path.endswith("000003.log")
