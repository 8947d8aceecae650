import pytest

from backup.errors import InvalidFingerprintError
from backup.manifest import HEADER, SIGNATURE, basename, decode, encode, parse_manifest


def test_encode_lists_top_level_items_in_selection_order():
    text = encode([r"C:\Users\alice\Projects", r"C:\Users\alice\Notes.txt"])
    lines = text.splitlines()

    assert lines[0] == SIGNATURE
    assert lines[1] == HEADER
    assert lines[2] == r"Folder 1: C:\Users\alice\Projects"
    assert lines[3] == r"Folder 2: C:\Users\alice\Notes.txt"
    assert len(lines) == 4


def test_decode_recovers_basenames_of_every_top_level_path():
    selection = ["/home/alice/Projects", "/srv/shared/report.pdf", r"D:\Media\Photos"]

    mapping = decode(encode(selection))

    assert mapping == {
        "Projects": "/home/alice/Projects",
        "report.pdf": "/srv/shared/report.pdf",
        "Photos": r"D:\Media\Photos",
    }


def test_decode_keeps_the_later_path_for_a_duplicate_basename():
    mapping = decode(encode(["/home/alice/work/notes", "/home/alice/play/notes"]))

    assert mapping == {"notes": "/home/alice/play/notes"}


def test_decode_rejects_text_without_signature():
    with pytest.raises(InvalidFingerprintError):
        decode("Folder 1: /home/alice/Projects\n")


def test_decode_accepts_signature_anywhere_and_ignores_other_lines():
    text = "\n".join(
        [
            "written by hand",
            SIGNATURE,
            "garbage line",
            "Folder 1: /data/odd: name",
            "",
        ]
    )

    mapping = decode(text)

    assert mapping == {"odd: name": "/data/odd: name"}


def test_decode_tolerates_windows_line_endings():
    text = encode([r"C:\Users\alice\Notes.txt"]).replace("\n", "\r\n")

    assert decode(text) == {"Notes.txt": r"C:\Users\alice\Notes.txt"}


def test_parse_manifest_keeps_contiguous_indices():
    manifest = parse_manifest(encode(["/a/one", "/b/two", "/c/three"]))

    assert [index for index, _ in manifest.entries] == [1, 2, 3]
    assert manifest.key_map() == {"one": "/a/one", "two": "/b/two", "three": "/c/three"}


def test_basename_understands_both_path_flavours():
    assert basename(r"C:\Users\alice\Projects") == "Projects"
    assert basename("/home/alice/Projects/") == "Projects"
    assert basename("relative") == "relative"
