from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from ustar.archive import Archive
from ustar.constants import OWNER_ENV_KEY, TypeFlag
from ustar.entry import Entry
from ustar.errors import UstarError


_KIND_LABELS = {
    TypeFlag.NORMAL: "file",
    TypeFlag.HARDLINK: "hardlink",
    TypeFlag.SYMBOLIC: "symlink",
    TypeFlag.CHARACTER: "chardev",
    TypeFlag.BLOCK: "blockdev",
    TypeFlag.DIRECTORY: "dir",
    TypeFlag.FIFO: "fifo",
    TypeFlag.UNKNOWN: "unknown",
}


def _resolve_user(user: Optional[str], no_user: bool) -> Optional[str]:
    """Pick the owner name recorded in new headers.

    Args:
        user: Explicit name from ``--user``.
        no_user: When True, leave the owner name field empty.

    Returns:
        The explicit name, else the ``USER`` environment variable, else None.
    """
    if no_user:
        return None
    if user:
        return user
    return os.environ.get(OWNER_ENV_KEY) or None


def _safe_print(text: str) -> None:
    # names may carry surrogate escapes for bytes that are not UTF-8
    encoding = getattr(sys.stdout, "encoding", None) or "utf-8"
    print(text.encode(encoding, "backslashreplace").decode(encoding))


def _add_inputs(archive: Archive, inputs: List[str], user: Optional[str], quiet: bool) -> int:
    count = 0
    for path in inputs:
        for e in archive.add_tree(path, user=user):
            count += 1
            if not quiet:
                _safe_print(f"a {e.name}")
    return count


def cmd_create(output: str, inputs: List[str], *, user: Optional[str] = None, quiet: bool = False) -> bool:
    """Create a new archive from files and directories.

    Args:
        output: Destination archive path (overwritten).
        inputs: Files/directories to add; directories are walked.
        user: Owner name written into each header.
        quiet: Suppress per-entry output.
    """
    archive = Archive()
    count = _add_inputs(archive, inputs, user, quiet)
    written = archive.save(output)
    if not quiet:
        print(f"Done: {count} entries, {written} bytes")
    return True


def cmd_append(archive_path: str, inputs: List[str], *, user: Optional[str] = None, quiet: bool = False) -> bool:
    """Append files to an existing archive, rewriting it in place."""
    archive = Archive.load(archive_path, strict=True)
    count = _add_inputs(archive, inputs, user, quiet)
    archive.save(archive_path)
    if not quiet:
        print(f"Appended {count} entries; archive now holds {len(archive)}")
    return True


def _describe(e: Entry) -> str:
    kind = _KIND_LABELS[e.type_flag]
    h = e.header
    stamp = time.strftime("%Y-%m-%d %H:%M", time.gmtime(h.mod_time))
    owner = h.owner_name or str(h.owner_uid)
    group = h.group_name or str(h.owner_gid)
    line = f"{kind}\t{h.file_mode:04o}\t{owner}/{group}\t{e.size}\t{stamp}\t{e.name}"
    if e.type_flag is TypeFlag.SYMBOLIC:
        line += f" -> {h.link_target}"
    elif e.type_flag in (TypeFlag.CHARACTER, TypeFlag.BLOCK):
        major, minor = h.device
        line += f" [{major},{minor}]"
    return line


def cmd_list(archive_path: str, *, strict: bool = False) -> bool:
    archive = Archive.load(archive_path, strict=strict)
    for e in archive:
        _safe_print(_describe(e))
    return True


def cmd_remove(archive_path: str, names: List[str]) -> bool:
    """Remove the first entry matching each name; False if any name was absent."""
    archive = Archive.load(archive_path, strict=True)
    ok = True
    for name in names:
        if not archive.remove(name):
            print(f"Not found: {name}", file=sys.stderr)
            ok = False
    archive.save(archive_path)
    return ok


def cmd_extract(archive_path: str, *, outdir: str = ".", strict: bool = False, quiet: bool = False) -> bool:
    archive = Archive.load(archive_path, strict=strict)
    for e, target in archive.extract_all(outdir):
        if target is None:
            _safe_print(f"    skipping: {e.name} ({_KIND_LABELS[e.type_flag]} not supported)")
        elif not quiet:
            _safe_print(f"x {e.name}")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="ustar",
        description="Minimal USTAR tape-archive tool",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create archive")
    ap_create.add_argument("output", help="Output .tar path")
    ap_create.add_argument("inputs", nargs="+", help="Input files/directories")

    ap_append = sub.add_parser("append", help="Append files to an existing archive")
    ap_append.add_argument("archive", help="Archive path")
    ap_append.add_argument("inputs", nargs="+", help="Input files/directories to append")

    for p in (ap_create, ap_append):
        p.add_argument("--user", help=f"Owner name for new entries (default: ${OWNER_ENV_KEY})")
        p.add_argument("--no-user", action="store_true", help="Leave the owner name empty")
        p.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--strict", action="store_true", help="Fail on malformed headers instead of stopping")

    ap_remove = sub.add_parser("remove", help="Remove entries by name")
    ap_remove.add_argument("archive", help="Archive path")
    ap_remove.add_argument("names", nargs="+", help="Entry names to remove (first match each)")

    ap_extract = sub.add_parser("extract", help="Extract archive contents")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--strict", action="store_true", help="Fail on malformed headers instead of stopping")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "create":
            user = _resolve_user(args.user, args.no_user)
            success = cmd_create(args.output, args.inputs, user=user, quiet=args.quiet)
        elif args.cmd == "append":
            user = _resolve_user(args.user, args.no_user)
            success = cmd_append(args.archive, args.inputs, user=user, quiet=args.quiet)
        elif args.cmd == "list":
            success = cmd_list(args.archive, strict=args.strict)
        elif args.cmd == "remove":
            success = cmd_remove(args.archive, args.names)
        elif args.cmd == "extract":
            success = cmd_extract(args.archive, outdir=args.outdir, strict=args.strict, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
        sys.exit(0 if success else 1)
    except (UstarError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
