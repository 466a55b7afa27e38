from __future__ import annotations

import contextlib
import io
import os
import tarfile
import tempfile
import unittest
from pathlib import Path

from ustar.archive import Archive
from ustar.constants import BLOCK_SIZE, TERMINATOR_BLOCKS, TypeFlag
from ustar.entry import Entry
from ustar.errors import ArchiveIOError, InvalidChecksum, MetadataError
from ustar.header import Header, format_text
from ustar.metadata import OSMetadataProvider

_TERMINATOR = BLOCK_SIZE * TERMINATOR_BLOCKS


def _create_sample_tree(base: Path) -> Path:
    root = base / "proj"
    (root / "docs").mkdir(parents=True)
    (root / "docs" / "a.txt").write_text("hello world\n" * 50, encoding="utf-8")
    (root / "docs" / "exact.bin").write_bytes(os.urandom(BLOCK_SIZE))
    (root / "empty").write_bytes(b"")
    (root / "notes.md").write_text("# Title\nSome content\n", encoding="utf-8")
    return root


class _BrokenReader(io.RawIOBase):
    def readable(self):
        return True

    def readinto(self, b):
        raise OSError("read error")


class ArchiveTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)

    def _file(self, name: str, data: bytes) -> str:
        p = self.root / name
        p.write_bytes(data)
        return str(p)

    def test_identity_single_entry(self):
        data = b"alpha beta gamma\n" * 40
        archive = Archive.new_from_path(self._file("a.txt", data))
        self.assertEqual(1, len(archive))
        buf = io.BytesIO()
        archive.write(buf)
        buf.seek(0)
        reread = Archive.open_from_stream(buf)
        self.assertEqual(1, len(reread))
        entry = reread.entries[0]
        self.assertEqual(format_text("a.txt", 100), entry.header.name)
        self.assertEqual(data, entry.content)

    def test_write_appends_terminator(self):
        archive = Archive.new_from_path(self._file("a.txt", b"x" * 600))
        buf = io.BytesIO()
        written = archive.write(buf)
        raw = buf.getvalue()
        self.assertEqual(len(raw), written)
        self.assertEqual(BLOCK_SIZE * 3 + _TERMINATOR, written)
        self.assertEqual(b"\x00" * _TERMINATOR, raw[-_TERMINATOR:])

    def test_empty_archive_writes_nothing(self):
        archive = Archive.new_from_path(self._file("a.txt", b"x"))
        self.assertTrue(archive.remove("a.txt"))
        buf = io.BytesIO()
        self.assertEqual(0, archive.write(buf))
        self.assertEqual(b"", buf.getvalue())
        self.assertEqual(0, Archive().write(buf))

    def test_append_preserves_order(self):
        a = self._file("a.txt", b"a")
        b = self._file("b.txt", b"b" * BLOCK_SIZE)
        c = self._file("c.txt", b"")
        archive = Archive.new_from_path(a)
        archive.append(b)
        archive.append(c)
        archive.append(a, arcname="again.txt")
        buf = io.BytesIO()
        archive.write(buf)
        buf.seek(0)
        reread = Archive.open_from_stream(buf, strict=True)
        self.assertEqual(["a.txt", "b.txt", "c.txt", "again.txt"], reread.names())
        self.assertEqual([b"a", b"b" * BLOCK_SIZE, b"", b"a"], [e.content for e in reread])

    def test_failed_append_leaves_archive_unchanged(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        with self.assertRaises(MetadataError):
            archive.append(str(self.root / "missing.txt"))
        self.assertEqual(["a.txt"], archive.names())

    def test_remove_first_match_only(self):
        path = self._file("dup.txt", b"one")
        archive = Archive.new_from_path(path)
        archive.append(path)
        self.assertEqual(2, len(archive))
        self.assertTrue(archive.remove("dup.txt"))
        self.assertEqual(["dup.txt"], archive.names())

    def test_remove_returns_false_when_absent(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        archive.append(self._file("b.txt", b"b"))
        self.assertTrue(archive.remove("a.txt"))
        self.assertTrue(archive.remove("b.txt"))
        self.assertFalse(archive.remove("a.txt"))
        self.assertEqual(0, len(archive))
        self.assertFalse(archive.remove("zzz"))

    def test_remove_compares_fixed_width_field(self):
        long_name = "n" * 100
        archive = Archive.new_from_path(self._file("x", b"x"), arcname=long_name)
        self.assertFalse(archive.remove("n" * 99))
        self.assertIsNotNone(archive.find(long_name + "overflow"))
        self.assertTrue(archive.remove(long_name + "overflow"))

    def test_find(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        self.assertEqual("a.txt", archive.find("a.txt").name)
        self.assertIsNone(archive.find("b.txt"))

    def test_lenient_read_stops_at_corrupt_entry(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        archive.append(self._file("b.txt", b"b"))
        buf = io.BytesIO()
        archive.write(buf)
        raw = bytearray(buf.getvalue())
        raw[2 * BLOCK_SIZE] ^= 0x01  # first byte of the second header's name
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            reread = Archive.open_from_stream(io.BytesIO(bytes(raw)))
        self.assertEqual(["a.txt"], reread.names())
        self.assertIn("Warning", err.getvalue())

    def test_strict_read_raises_on_corrupt_entry(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        archive.append(self._file("b.txt", b"b"))
        buf = io.BytesIO()
        archive.write(buf)
        raw = bytearray(buf.getvalue())
        raw[2 * BLOCK_SIZE] ^= 0x01
        with self.assertRaises(InvalidChecksum):
            Archive.open_from_stream(io.BytesIO(bytes(raw)), strict=True)

    def test_stream_without_terminator(self):
        entry = Entry.from_path(self._file("a.txt", b"a"))
        buf = io.BytesIO()
        entry.to_stream(buf)
        buf.seek(0)
        self.assertEqual(["a.txt"], Archive.open_from_stream(buf, strict=True).names())

    def test_io_errors_always_propagate(self):
        with self.assertRaises(ArchiveIOError):
            Archive.open_from_stream(_BrokenReader())

    def test_save_and_load(self):
        target = str(self.root / "out.tar")
        archive = Archive.new_from_path(self._file("a.txt", b"payload"))
        written = archive.save(target)
        self.assertEqual(os.path.getsize(target), written)
        self.assertEqual(["a.txt"], Archive.load(target).names())

    def test_load_missing_file(self):
        with self.assertRaises(ArchiveIOError):
            Archive.load(str(self.root / "absent.tar"))

    def test_save_to_unwritable_location(self):
        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        with self.assertRaises(ArchiveIOError):
            archive.save(str(self.root / "no" / "such" / "dir.tar"))

    def test_add_tree_orders_directories_first(self):
        tree = _create_sample_tree(self.root)
        archive = Archive()
        added = archive.add_tree(str(tree))
        self.assertEqual(
            ["proj", "proj/docs", "proj/docs/a.txt", "proj/docs/exact.bin", "proj/empty", "proj/notes.md"],
            [e.name for e in added],
        )
        self.assertIs(TypeFlag.DIRECTORY, archive.find("proj/docs").type_flag)
        self.assertEqual(archive.names(), [e.name for e in added])

    def test_add_tree_single_file(self):
        archive = Archive()
        added = archive.add_tree(self._file("solo.txt", b"s"))
        self.assertEqual(["solo.txt"], [e.name for e in added])

    def test_add_tree_failure_leaves_archive_unchanged(self):
        tree = _create_sample_tree(self.root)
        bad = str(tree / "empty")

        class _FailOn(OSMetadataProvider):
            def stat(self, path):
                if path == bad:
                    raise MetadataError(f"cannot stat {path}")
                return super().stat(path)

        archive = Archive.new_from_path(self._file("a.txt", b"a"))
        with self.assertRaises(MetadataError):
            archive.add_tree(str(tree), _FailOn())
        self.assertEqual(["a.txt"], archive.names())

    def test_extract_round_trip(self):
        tree = _create_sample_tree(self.root)
        if hasattr(os, "symlink"):
            os.symlink("notes.md", tree / "link.md")
        os.chmod(tree / "notes.md", 0o600)
        archive = Archive()
        archive.add_tree(str(tree))
        buf = io.BytesIO()
        archive.write(buf)
        buf.seek(0)
        out = self.root / "out"
        out.mkdir()
        results = Archive.open_from_stream(buf).extract_all(str(out))
        self.assertTrue(all(target is not None for _e, target in results))
        for rel in ("docs/a.txt", "docs/exact.bin", "empty", "notes.md"):
            self.assertEqual((tree / rel).read_bytes(), (out / "proj" / rel).read_bytes(), rel)
        self.assertEqual(0o600, os.stat(out / "proj" / "notes.md").st_mode & 0o777)
        if hasattr(os, "symlink"):
            self.assertEqual("notes.md", os.readlink(out / "proj" / "link.md"))

    def test_extract_rejects_parent_segments(self):
        header = Header.build(name="../evil", type_flag=TypeFlag.NORMAL, size=1)
        archive = Archive([Entry(header=header, blocks=(b"x".ljust(BLOCK_SIZE, b"\x00"),))])
        with self.assertRaises(ValueError):
            archive.extract_all(str(self.root))

    def test_extract_rejects_absolute_names(self):
        out = self.root / "out"
        out.mkdir()
        for name in ("/abs.txt", "C:/abs.txt"):
            header = Header.build(name=name, type_flag=TypeFlag.NORMAL, size=1)
            archive = Archive([Entry(header=header, blocks=(b"x".ljust(BLOCK_SIZE, b"\x00"),))])
            with self.assertRaises(ValueError, msg=name):
                archive.extract_all(str(out))
        self.assertEqual([], os.listdir(out))

    def test_extract_refuses_to_write_through_symlink(self):
        outside = self.root / "outside"
        outside.mkdir()
        out = self.root / "out"
        out.mkdir()
        link = Header.build(name="lnk", type_flag=TypeFlag.SYMBOLIC, link_target=str(outside))
        payload = Header.build(name="lnk/pwned", type_flag=TypeFlag.NORMAL, size=1)
        archive = Archive(
            [
                Entry(header=link),
                Entry(header=payload, blocks=(b"x".ljust(BLOCK_SIZE, b"\x00"),)),
            ]
        )
        with self.assertRaises(ValueError):
            archive.extract_all(str(out))
        self.assertFalse((outside / "pwned").exists())
        self.assertFalse(os.path.lexists(out / "lnk"))

    def test_extract_rejects_relative_symlink_leaving_dest(self):
        out = self.root / "out"
        out.mkdir()
        link = Header.build(name="sub/up", type_flag=TypeFlag.SYMBOLIC, link_target="../../elsewhere")
        with self.assertRaises(ValueError):
            Archive([Entry(header=link)]).extract_all(str(out))
        self.assertFalse(os.path.lexists(out / "sub" / "up"))

    def test_extract_rejects_preexisting_symlinked_parent(self):
        if not hasattr(os, "symlink"):
            self.skipTest("symlinks unavailable")
        outside = self.root / "outside"
        outside.mkdir()
        out = self.root / "out"
        out.mkdir()
        os.symlink(str(outside), out / "docs")
        header = Header.build(name="docs/a.txt", type_flag=TypeFlag.NORMAL, size=1)
        archive = Archive([Entry(header=header, blocks=(b"x".ljust(BLOCK_SIZE, b"\x00"),))])
        with self.assertRaises(ValueError):
            archive.extract_all(str(out))
        self.assertEqual([], os.listdir(outside))

    def test_extract_replaces_symlink_instead_of_following_it(self):
        if not hasattr(os, "symlink"):
            self.skipTest("symlinks unavailable")
        out = self.root / "out"
        out.mkdir()
        victim = out / "victim.txt"
        victim.write_bytes(b"keep")
        link = Header.build(name="f.txt", type_flag=TypeFlag.SYMBOLIC, link_target="victim.txt")
        regular = Header.build(name="f.txt", type_flag=TypeFlag.NORMAL, size=3)
        archive = Archive([Entry(header=link), Entry(header=regular, blocks=(b"new".ljust(BLOCK_SIZE, b"\x00"),))])
        archive.extract_all(str(out))
        self.assertFalse(os.path.islink(out / "f.txt"))
        self.assertEqual(b"new", (out / "f.txt").read_bytes())
        self.assertEqual(b"keep", victim.read_bytes())

    def test_extract_skips_unsupported_types(self):
        header = Header.build(name="pipe", type_flag=TypeFlag.FIFO)
        results = Archive([Entry(header=header)]).extract_all(str(self.root))
        self.assertEqual([None], [target for _e, target in results])
        self.assertFalse((self.root / "pipe").exists())


class TarfileInteropTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)

    def test_stdlib_reads_our_archive(self):
        tree = _create_sample_tree(self.root)
        archive = Archive()
        archive.add_tree(str(tree), user="dana")
        buf = io.BytesIO()
        archive.write(buf)
        buf.seek(0)
        with tarfile.open(fileobj=buf, mode="r:") as tf:
            members = tf.getmembers()
            self.assertEqual(archive.names(), [m.name for m in members])
            self.assertEqual("dana", members[0].uname)
            self.assertTrue(members[0].isdir())
            data = tf.extractfile("proj/docs/a.txt").read()
        self.assertEqual((tree / "docs" / "a.txt").read_bytes(), data)

    def test_we_read_stdlib_gnu_archive(self):
        tree = _create_sample_tree(self.root)
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.GNU_FORMAT) as tf:
            tf.add(str(tree), arcname="proj")
        buf.seek(0)
        archive = Archive.open_from_stream(buf, strict=True)
        self.assertEqual(
            ["proj/", "proj/docs/", "proj/docs/a.txt", "proj/docs/exact.bin", "proj/empty", "proj/notes.md"],
            archive.names(),
        )
        self.assertEqual((tree / "docs" / "exact.bin").read_bytes(), archive.find("proj/docs/exact.bin").content)
        self.assertEqual(b"", archive.find("proj/empty").content)


if __name__ == "__main__":
    unittest.main()
