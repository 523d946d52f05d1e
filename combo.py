"""Foomatic printer/driver combo resolver.

Computes a Foomatic printer/driver combo (or the overview of all combos)
by a sequential, tree-less read of the database XML files. Every document
is scanned once while it is rewritten in place: options and enumeration
choices which do not apply to the requested printer/driver pair are cut
out and the resulting default setting is inserted.

Usage:
    python combo.py -p HP-LaserJet_4 -d ljet4 -o PageSize=A4
    python combo.py -O
    python combo.py -C -n
"""

import argparse
import logging
import re
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

DEFAULT_LIBDIR = Path("/usr/share/foomatic")
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


# ===--- CLI config contracts ---=== #


class PPDFilter(Enum):
    """Overview variants producing the CUPS PPD list (-C)."""

    WITH_READY_MADE = "C"
    NO_READY_MADE = "c"


@dataclass(frozen=True)
class ComboConfig:
    printer_id: str
    driver: str
    defaults: tuple[str, ...]
    libdir: Path
    verbosity: int = 0


@dataclass(frozen=True)
class OverviewConfig:
    ppd_filter: PPDFilter | None
    libdir: Path
    verbosity: int = 0


VALID_ERROR_CODES = {
    "MISSING_PRINTER",
    "MISSING_DRIVER",
    "CONFLICT_MODE_FLAGS",
    "READY_MADE_WITHOUT_CUPS",
    "PATH_NOT_FOUND",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_libdir(path: Path | None) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            "-l is required: no database directory provided.",
            "Pass the Foomatic database location: -l /usr/share/foomatic",
        )
    if path.is_dir():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Foomatic database directory does not exist: {path}",
        "Pass the Foomatic database location: -l /usr/share/foomatic",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="foomatic-combo-xml",
        description="Compute Foomatic printer/driver combo XML",
    )

    parser.add_argument("-p", "-P", "--printer", dest="printer", default=None)
    parser.add_argument("-d", "--driver", dest="driver", default=None)
    parser.add_argument(
        "-o", "--option", dest="options", action="append", default=None
    )

    overview_group = parser.add_mutually_exclusive_group()
    overview_group.add_argument(
        "-O", "--overview", dest="overview", action="store_true", default=False
    )
    overview_group.add_argument(
        "-C", "--cups-overview", dest="cups", action="store_true", default=False
    )
    parser.add_argument(
        "-n",
        "--no-ready-made",
        dest="no_ready_made",
        action="store_true",
        default=False,
    )

    parser.add_argument("-l", "--libdir", dest="libdir", type=Path, default=DEFAULT_LIBDIR)
    parser.add_argument("-v", "--verbose", dest="verbose", action="count", default=0)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> ComboConfig | OverviewConfig:
    defaults = tuple(args.options) if args.options else tuple()
    has_combo_input = bool(args.printer or args.driver or defaults)
    has_overview = bool(args.overview or args.cups)

    if args.no_ready_made and not args.cups:
        raise ConfigError(
            "READY_MADE_WITHOUT_CUPS",
            "-n is only used with -C.",
            "Add -C or remove -n.",
        )

    if has_combo_input and has_overview:
        raise ConfigError(
            "CONFLICT_MODE_FLAGS",
            "Printer/driver/option flags cannot be combined with overview flags.",
            "Choose either a combo (-p/-d/-o) or an overview (-O or -C).",
        )

    libdir = validate_libdir(args.libdir)

    if has_overview:
        if not args.cups:
            ppd_filter = None
        elif args.no_ready_made:
            ppd_filter = PPDFilter.NO_READY_MADE
        else:
            ppd_filter = PPDFilter.WITH_READY_MADE
        return OverviewConfig(
            ppd_filter=ppd_filter, libdir=libdir, verbosity=args.verbose
        )

    if args.printer is None:
        raise ConfigError(
            "MISSING_PRINTER",
            "A printer ID must be supplied!",
            "Pass the Foomatic printer ID: -p HP-LaserJet_4",
        )
    if args.driver is None:
        raise ConfigError(
            "MISSING_DRIVER",
            "A driver name must be supplied!",
            "Pass the driver name: -d ljet4",
        )

    return ComboConfig(
        printer_id=args.printer,
        driver=args.driver,
        defaults=defaults,
        libdir=libdir,
        verbosity=args.verbose,
    )


def build_config(argv: list[str] | None = None) -> ComboConfig | OverviewConfig:
    return validate_config(parse_args(argv))


def configure_logging(verbosity: int) -> None:
    """Route log records to stderr; stdout only carries the XML result.

    -v shows which files are processed, -vv adds the parser's trace.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    logging.basicConfig(
        level=level, stream=sys.stderr, format="%(levelname)s: %(message)s"
    )


# ===--- Run errors ---=== #


FATAL_ERROR_CODES = {
    "NESTED_ANGLE_BRACKETS",
    "UNNAMED_TAG",
    "UNTERMINATED_TAG",
    "UNTERMINATED_COMMENT",
    "MISMATCHED_TAG",
    "UNCLOSED_ELEMENT",
    "MISSING_MAKE_MODEL",
    "UNREADABLE_FILE",
    "UNREADABLE_DIRECTORY",
    "UNSUPPORTED_COMBO",
}


class ComboError(Exception):
    """Fatal condition: the database cannot be trusted, the run stops."""

    def __init__(
        self,
        code: str,
        message: str,
        filename: str | None = None,
        line: int | None = None,
    ):
        if code not in FATAL_ERROR_CODES:
            raise ValueError(f"Unknown fatal error code: {code}")
        if filename is not None and line is not None:
            message = f"{message} in {filename}, line {line}"
        elif filename is not None:
            message = f"{message} in {filename}"
        super().__init__(message)
        self.code = code
        self.message = message
        self.filename = filename
        self.line = line


class DocumentDiscarded(Exception):
    """The document does not apply to the requested combo; drop it."""


# ===--- Printer ID translation ---=== #


class IdTable:
    """Old printer ID -> current printer ID, compared by exact string."""

    def __init__(self, mapping: dict[str, str] | None = None):
        self._mapping = dict(mapping or {})

    def translate(self, printer_id: str) -> str:
        return self._mapping.get(printer_id, printer_id)

    def __len__(self) -> int:
        return len(self._mapping)

    def __contains__(self, printer_id: object) -> bool:
        return printer_id in self._mapping


def parse_id_table(text: str) -> IdTable:
    """Parse "old new" lines; comments and one-word lines are skipped."""
    mapping: dict[str, str] = {}
    for line in text.splitlines():
        words = line.split()
        if len(words) < 2 or words[0].startswith("#"):
            continue
        mapping.setdefault(words[0], words[1])
    return IdTable(mapping)


def load_id_table(path: Path) -> IdTable:
    data = load_file(path)
    if data is None:
        logger.info("Printer ID translation table missing or not readable: %s", path)
        return IdTable()
    table = parse_id_table(data.decode(ENCODING, ENCODING_ERRORS))
    logger.info("Printer ID translation table loaded: %d entries", len(table))
    return table


# ===--- Document buffer and splicing ---=== #


@dataclass(frozen=True)
class Splice:
    """One buffer mutation: `removed` bytes dropped and `inserted` added at start."""

    start: int
    removed: int = 0
    inserted: int = 0

    @property
    def end(self) -> int:
        return self.start + self.removed

    @property
    def delta(self) -> int:
        return self.inserted - self.removed


def rebase_mark(position: int | None, splice: Splice) -> int | None:
    if position is None:
        return None
    if splice.removed:
        if position >= splice.end:
            return position - splice.removed
        if position > splice.start:
            return splice.start
        return position
    if position >= splice.start:
        return position + splice.inserted
    return position


def rebase_cursor(cursor: int, splice: Splice) -> int:
    """New scan cursor after a splice.

    A cursor inside a deleted span lands one before its start so the scan
    loop's increment resumes right after the removed text. Inserted text
    is always behind the scan point and is skipped, never rescanned.
    """
    if splice.removed:
        if cursor >= splice.end:
            return cursor - splice.removed
        if cursor >= splice.start:
            return splice.start - 1
        return cursor
    return cursor + splice.inserted


class Document:
    def __init__(self, data: bytes | bytearray | str, name: str = "<buffer>"):
        if isinstance(data, str):
            data = data.encode(ENCODING, ENCODING_ERRORS)
        self.data = bytearray(data)
        self.name = name
        self.cursor = 0
        self.tag_start: int | None = None
        self.prev_tag_end: int | None = None
        self.marks: dict[str, int] = {}
        self.discarded = False

    def __len__(self) -> int:
        return len(self.data)

    def text(self, start: int = 0, end: int | None = None) -> str:
        return bytes(self.data[start:end]).decode(ENCODING, ENCODING_ERRORS)

    def apply(self, splice: Splice) -> None:
        self.cursor = rebase_cursor(self.cursor, splice)
        self.tag_start = rebase_mark(self.tag_start, splice)
        self.prev_tag_end = rebase_mark(self.prev_tag_end, splice)
        self.marks = {
            name: rebase_mark(position, splice)
            for name, position in self.marks.items()
        }

    def replace(self, text: str) -> None:
        self.data = bytearray(text.encode(ENCODING, ENCODING_ERRORS))
        self.cursor = len(self.data)
        self.tag_start = None
        self.prev_tag_end = None
        self.marks.clear()

    def discard(self) -> None:
        self.data = bytearray()
        self.cursor = 0
        self.tag_start = None
        self.prev_tag_end = None
        self.marks.clear()
        self.discarded = True


def delete_span(doc: Document, start: int, end: int) -> int:
    """Remove doc.data[start:end] and return the corrected scan cursor."""
    if not 0 <= start <= end <= len(doc.data):
        raise ValueError(f"Invalid span [{start}, {end}) for {len(doc.data)} bytes")
    del doc.data[start:end]
    doc.apply(Splice(start, removed=end - start))
    logger.debug("    Removed %d bytes at %d", end - start, start)
    return doc.cursor


def insert_before(doc: Document, position: int, text: str) -> int:
    """Insert text at position (at or behind the scan point); return the cursor."""
    if not 0 <= position <= min(doc.cursor + 1, len(doc.data)):
        raise ValueError(
            f"Insert position {position} is ahead of the scan cursor {doc.cursor}"
        )
    payload = text.encode(ENCODING, ENCODING_ERRORS)
    doc.data[position:position] = payload
    doc.apply(Splice(position, inserted=len(payload)))
    logger.debug("    Inserted %d bytes at %d", len(payload), position)
    return doc.cursor


# ===--- Tag scanner ---=== #


class TagStart(NamedTuple):
    name: str
    is_empty: bool


class TagEnd(NamedTuple):
    name: str


class Word(NamedTuple):
    text: str


class Text(NamedTuple):
    start: int
    end: int


Event = TagStart | TagEnd | Word | Text


class TagKind(Enum):
    OPEN = 1
    CLOSE = -1
    EMPTY = 0


_LT = ord("<")
_GT = ord(">")
_SLASH = ord("/")
_NEWLINE = ord("\n")
_QUOTES = {ord('"'), ord("'")}
_DELIMITERS = {ord(" "), ord("\t"), ord("\r"), _NEWLINE, _SLASH, _GT}
_COMMENT_OPEN = b"!--"
_COMMENT_CLOSE = b"--"


class TagScanner:
    """Single pass over a Document, restartable only from the start.

    Events reflect the buffer as it is when they are produced, so the
    consumer may splice the document between two events. Text spans are
    only valid until the next splice.
    """

    def __init__(self, doc: Document):
        self.doc = doc
        self.depth = 0
        self.line = 1
        self.in_header = True
        self.open_elements: list[str] = []

    def enter_body(self) -> None:
        """Called on the root element: the header is gone, depth restarts."""
        self.in_header = False
        self.depth = 0
        self.open_elements.clear()

    def error(self, code: str, message: str) -> ComboError:
        return ComboError(code, message, self.doc.name, self.line)

    def events(self) -> Iterator[Event]:
        doc = self.doc
        in_tag = False
        in_comment = False
        quote: int | None = None
        named = False
        kind = TagKind.OPEN
        name = ""
        words: list[str] = []
        word_start: int | None = None

        while doc.cursor < len(doc.data):
            char = doc.data[doc.cursor]
            if char == _NEWLINE:
                self.line += 1

            if quote is not None:
                if char == quote:
                    quote = None
            elif char == _LT:
                if in_tag:
                    if not in_comment and not self.in_header:
                        raise self.error(
                            "NESTED_ANGLE_BRACKETS", "XML error: Nested angle brackets"
                        )
                else:
                    in_tag = True
                    opener = doc.cursor + 1
                    if doc.data[opener : opener + 3] == _COMMENT_OPEN:
                        in_comment = True
                    else:
                        named = False
                        kind = TagKind.OPEN
                        name = ""
                        words = []
                        word_start = None
                        doc.tag_start = doc.cursor
            elif char in _DELIMITERS:
                if in_tag and not in_comment:
                    if word_start is not None:
                        word = doc.text(word_start, doc.cursor)
                        word_start = None
                        if named:
                            words.append(word)
                        else:
                            named = True
                            name = word
                    if char == _SLASH:
                        kind = TagKind.EMPTY if named else TagKind.CLOSE
                if char == _GT and in_tag:
                    if in_comment:
                        if doc.data[doc.cursor - 2 : doc.cursor] == _COMMENT_CLOSE:
                            in_comment = False
                            in_tag = False
                    else:
                        in_tag = False
                        if named:
                            yield from self._complete_tag(name, kind, words)
                        elif not self.in_header:
                            raise self.error("UNNAMED_TAG", "XML error: Tag without name")
                        doc.prev_tag_end = doc.cursor + 1
                # A '>' outside any tag is left alone.
            elif in_tag and not in_comment:
                if char in _QUOTES:
                    quote = char
                if word_start is None:
                    word_start = doc.cursor
            doc.cursor += 1

        if in_comment:
            raise self.error("UNTERMINATED_COMMENT", "XML error: Unterminated comment")
        if in_tag:
            raise self.error("UNTERMINATED_TAG", "XML error: Unterminated tag")
        if not self.in_header and self.open_elements:
            raise self.error(
                "UNCLOSED_ELEMENT",
                f"XML error: Element <{self.open_elements[-1]}> not closed",
            )

    def _complete_tag(
        self, name: str, kind: TagKind, words: list[str]
    ) -> Iterator[Event]:
        doc = self.doc
        if doc.prev_tag_end is not None and doc.tag_start is not None:
            yield Text(doc.prev_tag_end, doc.tag_start)

        if kind is TagKind.CLOSE:
            self.depth -= 1
            if not self.in_header:
                if not self.open_elements or self.open_elements[-1] != name:
                    expected = self.open_elements[-1] if self.open_elements else None
                    raise self.error(
                        "MISMATCHED_TAG",
                        f"XML error: </{name}> does not close <{expected}>",
                    )
                self.open_elements.pop()
            yield TagEnd(name)
            return

        yield TagStart(name, kind is TagKind.EMPTY)
        for word in words:
            yield Word(word)
        if kind is TagKind.EMPTY:
            yield TagEnd(name)
        else:
            self.depth += 1
            if not self.in_header:
                self.open_elements.append(name)


def split_attribute(word: str) -> tuple[str, str]:
    """Split a tag word like id="printer/HP-LaserJet_4" into key and bare value."""
    key, _sep, value = word.partition("=")
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return key, value


# ===--- Nesting tracker ---=== #


class Nesting:
    """Entered-at sentinels per element role.

    A role is entered at depth + 1 when its opening tag appears and is left
    as soon as the depth falls below that value, which keeps same-named
    elements inside unrelated structure apart.
    """

    def __init__(self) -> None:
        self._entered: dict[str, int] = {}

    def enter(self, role: str, depth: int) -> None:
        self._entered[role] = depth + 1

    def leaving(self, role: str, depth: int) -> bool:
        entered = self._entered.get(role)
        if entered is None or depth >= entered:
            return False
        del self._entered[role]
        return True

    def __contains__(self, role: object) -> bool:
        return role in self._entered


# ===--- Run context and catalog adjacency ---=== #


PROTO_PRINTER_ID = "proto"


@dataclass
class DriverRef:
    name: str
    functionality: str | None = None


@dataclass(frozen=True)
class PpdRef:
    driver: str
    ppd: str


@dataclass
class PrinterEntry:
    id: str
    drivers: list[DriverRef] = field(default_factory=list)

    def find_driver(self, name: str) -> DriverRef | None:
        folded = name.casefold()
        for ref in self.drivers:
            if ref.name.casefold() == folded:
                return ref
        return None

    def add_driver(self, name: str, functionality: str | None = None) -> DriverRef:
        ref = self.find_driver(name)
        if ref is None:
            ref = DriverRef(name, functionality)
            self.drivers.append(ref)
        elif ref.functionality is None:
            ref.functionality = functionality
        return ref

    def remove_driver(self, name: str) -> bool:
        ref = self.find_driver(name)
        if ref is None:
            return False
        self.drivers.remove(ref)
        return True


class PrinterList:
    """Printer -> driver adjacency shared by both catalog passes, in insertion order."""

    def __init__(self) -> None:
        self._entries: dict[str, PrinterEntry] = {}

    def get(self, printer_id: str) -> PrinterEntry | None:
        return self._entries.get(printer_id)

    def get_or_create(self, printer_id: str) -> PrinterEntry:
        entry = self._entries.get(printer_id)
        if entry is None:
            entry = PrinterEntry(printer_id)
            self._entries[printer_id] = entry
        return entry

    def consume(self, printer_id: str) -> PrinterEntry | None:
        return self._entries.pop(printer_id, None)

    def retract_driver(self, name: str) -> None:
        for entry in self._entries.values():
            entry.remove_driver(name)

    def has_prototype(self, driver: str) -> bool:
        proto = self._entries.get(PROTO_PRINTER_ID)
        return proto is not None and proto.find_driver(driver) is not None

    def drain(self) -> Iterator[PrinterEntry]:
        while self._entries:
            printer_id = next(iter(self._entries))
            yield self._entries.pop(printer_id)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class RunContext:
    """State threaded through every document of one invocation.

    make/model are set by the device document and read by the constraints
    of the option documents parsed after it.
    """

    printer_id: str | None = None
    driver: str | None = None
    defaults: tuple[str, ...] = ()
    id_table: IdTable = field(default_factory=IdTable)
    ppd_filter: PPDFilter | None = None
    make: str = ""
    model: str = ""
    nopjl: bool = False
    printers: PrinterList = field(default_factory=PrinterList)


# ===--- Mode strategies ---=== #


class ModeStrategy:
    """Interprets scanner events for one kind of document.

    Subclasses declare the root element and the ordered element roles they
    track, and implement `open_<role>(tag)`, `close_<role>()` and
    `attr_<tag>(key, value)` hooks as needed. Close hooks run in `roles`
    order when several roles end on the same tag.
    """

    root: str = ""
    roles: tuple[str, ...] = ()

    def __init__(self, context: RunContext):
        self.context = context
        self.nesting = Nesting()
        self.body = ""
        self.tag = ""
        self.combo_confirmed = False
        self.doc: Document | None = None
        self.scanner: TagScanner | None = None

    def begin(self, doc: Document, scanner: TagScanner) -> None:
        self.doc = doc
        self.scanner = scanner

    def feed(self, event: Event) -> None:
        if isinstance(event, Text):
            self.body = self.doc.text(event.start, event.end)
        elif isinstance(event, TagStart):
            self.tag = event.name
            if event.is_empty:
                self.body = ""
            self.start_tag(event)
        elif isinstance(event, Word):
            if not self.scanner.in_header:
                hook = getattr(self, f"attr_{self.tag}", None)
                if hook is not None:
                    hook(*split_attribute(event.text))
        elif isinstance(event, TagEnd):
            self.end_tag(event)

    def start_tag(self, tag: TagStart) -> None:
        if self.scanner.in_header:
            if tag.name != self.root or tag.is_empty:
                return
            self.remove_header()
        if tag.name in self.roles:
            self.nesting.enter(tag.name, self.scanner.depth)
            hook = getattr(self, f"open_{tag.name}", None)
            if hook is not None:
                hook(tag)

    def end_tag(self, tag: TagEnd) -> None:
        depth = self.scanner.depth
        for role in self.roles:
            if self.nesting.leaving(role, depth):
                hook = getattr(self, f"close_{role}", None)
                if hook is not None:
                    hook()

    def finish(self) -> None:
        pass

    def remove_header(self) -> None:
        start = self.doc.tag_start or 0
        if start:
            logger.debug("    Removing XML file header")
            delete_span(self.doc, 0, start)
        self.scanner.enter_body()

    def cut_marked(self, mark: str) -> bool:
        """Delete from a saved mark through the end of the current tag."""
        start = self.doc.marks.pop(mark, None)
        if start is None:
            return False
        delete_span(self.doc, start, self.doc.cursor + 1)
        return True

    def marked_text(self, mark: str) -> str:
        start = self.doc.marks.pop(mark, None)
        if start is None:
            return ""
        return self.doc.text(start, self.doc.cursor + 1)


def strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix) :] if value.startswith(prefix) else value


def guess_make_model(printer_id: str) -> tuple[str, str]:
    """Split an ID like "HP-LaserJet_4" into ("HP", "LaserJet 4")."""
    make, sep, model = printer_id.partition("-")
    if not sep:
        model = "Unknown model"
    return make.replace("_", " "), model.replace("_", " ")


# ===--- Device mode ---=== #


class DeviceMode(ModeStrategy):
    """Printer XML file of a combo: current make/model, embedded driver list."""

    root = "printer"
    roles = (
        "printer",
        "make",
        "model",
        "autodetect",
        "drivers",
        "driver",
        "id",
        "lang",
        "postscript",
        "ppd",
    )

    def __init__(self, context: RunContext):
        super().__init__(context)
        self.driver_id = ""
        self.ppd = ""

    def begin(self, doc: Document, scanner: TagScanner) -> None:
        super().begin(doc, scanner)
        self.context.make = ""
        self.context.model = ""

    def open_driver(self, tag: TagStart) -> None:
        if "drivers" in self.nesting and not tag.is_empty:
            self.driver_id = ""

    def open_postscript(self, tag: TagStart) -> None:
        if "lang" in self.nesting and not tag.is_empty:
            self.driver_id = ""
            self.ppd = ""

    def close_make(self) -> None:
        # <make> inside <autodetect> describes the device's answer, not the entry
        if "autodetect" not in self.nesting:
            self.context.make = self.body

    def close_model(self) -> None:
        if "autodetect" not in self.nesting:
            self.context.model = self.body

    def close_driver(self) -> None:
        if "drivers" in self.nesting and self.driver_id:
            self._confirm(self.driver_id, "<drivers>")

    def close_id(self) -> None:
        self.driver_id = self.body

    def close_postscript(self) -> None:
        driver = "Postscript" if self.ppd else self.driver_id
        self._confirm(driver, "<postscript>")

    def close_ppd(self) -> None:
        self.ppd = self.body.lstrip()

    def _confirm(self, driver: str, section: str) -> None:
        if driver and driver == self.context.driver:
            logger.debug(
                "      Printer XML: Printer/Driver combo confirmed by %s section!",
                section,
            )
            self.combo_confirmed = True

    def finish(self) -> None:
        if not self.context.make or not self.context.model:
            raise ComboError(
                "MISSING_MAKE_MODEL",
                "Could not determine manufacturer or model name from the printer file",
                self.doc.name,
            )


# ===--- Driver mode ---=== #


class DriverMode(ModeStrategy):
    """Driver XML file of a combo: PJL capability, requested printer entry."""

    root = "driver"
    roles = ("execution", "nopjl", "driver", "printers", "printer", "id")

    def __init__(self, context: RunContext):
        super().__init__(context)
        self.saved_printers = ""
        self.save_printer = False
        self.printer_found = False

    def begin(self, doc: Document, scanner: TagScanner) -> None:
        super().begin(doc, scanner)
        # the driver may switch it on with <nopjl /> in <execution>
        self.context.nopjl = False

    def open_nopjl(self, tag: TagStart) -> None:
        if "execution" in self.nesting:
            logger.debug("      <nopjl /> found, driver does not allow PJL options!")
            self.context.nopjl = True

    def open_printers(self, tag: TagStart) -> None:
        if not tag.is_empty:
            self.doc.marks["printers"] = self.doc.prev_tag_end
            self.saved_printers = ""

    def open_printer(self, tag: TagStart) -> None:
        if not tag.is_empty:
            self.doc.marks["printer"] = self.doc.tag_start

    def close_printers(self) -> None:
        start = self.doc.marks.get("printers")
        if not self.cut_marked("printers"):
            return
        logger.debug("    Removing <printers> block")
        if self.saved_printers:
            logger.debug("    Inserting saved printer")
            insert_before(self.doc, start, self.saved_printers)

    def close_printer(self) -> None:
        entry = self.marked_text("printer")
        if self.save_printer and entry:
            self.save_printer = False
            self.saved_printers += f"\n <printers>\n  {entry}\n </printers>"

    def close_id(self) -> None:
        table = self.context.id_table
        printer_id = table.translate(strip_prefix(self.body, "printer/"))
        if printer_id == self.context.printer_id:
            logger.debug("    Found printer")
            self.printer_found = True
            self.save_printer = True

    def finish(self) -> None:
        if self.printer_found:
            self.combo_confirmed = True


# ===--- Option mode and constraint evaluation ---=== #


@dataclass(frozen=True)
class Constraint:
    sense: bool = False
    printer: str = ""
    make: str = ""
    model: str = ""
    driver: str = ""
    default: str = ""

    @property
    def is_null(self) -> bool:
        return not (self.printer or self.make or self.model or self.driver)

    @property
    def has_both_selectors(self) -> bool:
        return bool(self.printer and (self.make or self.model))


class MatchScore(NamedTuple):
    printer: int
    driver: int

    def matches(self) -> bool:
        return (self.printer > 0 or self.driver > 0) and (
            self.printer >= 0 and self.driver >= 0
        )


NO_SCORE = MatchScore(0, 0)


def score_constraint(constraint: Constraint, context: RunContext) -> MatchScore:
    """Score a constraint against the current printer/driver combo.

    printer: 2 for an exact printer ID or make+model match, 1 for a make
    match, -1 for any mismatch, 0 when the constraint says nothing.
    driver: 1 match, -1 mismatch, 0 nothing. A model without a make is not
    a printer selector.
    """
    printer = 0
    if constraint.printer:
        translated = context.id_table.translate(constraint.printer)
        printer = 2 if translated == context.printer_id else -1
    elif constraint.make:
        if constraint.make != context.make:
            printer = -1
        elif not constraint.model:
            printer = 1
        else:
            printer = 2 if constraint.model == context.model else -1

    driver = 0
    if constraint.driver:
        name = strip_prefix(constraint.driver, "driver/")
        driver = 1 if name == context.driver else -1

    return MatchScore(printer, driver)


def constraint_wins(score: MatchScore, high: MatchScore) -> bool:
    if not score.matches():
        return False
    if score.printer == 2:
        return True
    return score.printer >= high.printer and score.driver >= high.driver


_NUMERIC_PREFIX_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_BOOL_TRUE = {"true", "yes", "on", "1"}
_BOOL_FALSE = {"false", "no", "off", "0"}
_INT_CHARS = set("+-0123456789")
_FLOAT_CHARS = set("+-0123456789.eE")
NUMERIC_TYPES = {"int", "float"}


def parse_number(text: str) -> float:
    """Leading numeric value of text, 0.0 if there is none."""
    match = _NUMERIC_PREFIX_RE.match(text)
    return float(match.group(0)) if match else 0.0


def normalize_default_value(value: str, option_type: str) -> str | None:
    """Validate a user-supplied value for the option type; None if invalid."""
    if option_type == "bool":
        folded = value.lower()
        if folded in _BOOL_TRUE:
            return "1"
        if folded in _BOOL_FALSE:
            return "0"
        return None
    if option_type == "int" and not set(value) <= _INT_CHARS:
        return None
    if option_type == "float" and not set(value) <= _FLOAT_CHARS:
        return None
    return value


def resolve_user_default(
    settings: Iterable[str], shortname: str, option_type: str
) -> str | None:
    """Find the user's default for an option among -o settings.

    "Name=value" sets a value; for boolean options "Name" means true and
    "noName" false. The last setting naming the option decides.
    """
    value = None
    for setting in settings:
        if setting.startswith(shortname + "="):
            value = normalize_default_value(setting[len(shortname) + 1 :], option_type)
        elif option_type != "bool":
            continue
        elif setting == shortname:
            value = "1"
        elif setting[:2].lower() == "no" and setting[2:] == shortname:
            value = "0"
    return value


class OptionMode(ModeStrategy):
    """Option XML file: keep it only if it applies, trim its choices."""

    root = "option"
    roles = (
        "en",
        "arg_max",
        "arg_min",
        "arg_shortname",
        "arg_execution",
        "arg_pjl",
        "ev_shortname",
        "printer",
        "make",
        "model",
        "driver",
        "arg_defval",
        "constraint",
        "constraints",
        "enum_val",
        "option",
    )

    def __init__(self, context: RunContext):
        super().__init__(context)
        self.option_type = "enum"
        # None: no enumeration required (bool/int/float options)
        self.enum_count: int | None = None
        self.shortname = ""
        self.min_value: float | None = None
        self.max_value: float | None = None
        self.option_qualified = False
        self.constraint_default = ""
        self.builtin_default = ""
        self.high = NO_SCORE
        self.selectors: dict[str, str] = {}
        self.sense = False
        self.enum_id = ""
        self.enum_shortname = ""
        self.enum_qualified = True
        self.enum_removed = False
        self.choices: dict[str, str] = {}

    def attr_option(self, key: str, value: str) -> None:
        if key == "type" and value in {"enum", "bool", "int", "float"}:
            self.option_type = value
            # stays 0 if no enumeration choice survives
            self.enum_count = 0 if value == "enum" else None

    def attr_enum_val(self, key: str, value: str) -> None:
        if key == "id":
            self.enum_id = value

    def attr_constraint(self, key: str, value: str) -> None:
        if key == "sense":
            self.sense = value == "true"

    def open_arg_pjl(self, tag: TagStart) -> None:
        if "arg_execution" in self.nesting and self.context.nopjl:
            raise DocumentDiscarded(
                "Driver does not allow PJL options and this is a PJL option"
            )

    def open_enum_val(self, tag: TagStart) -> None:
        self.enum_id = ""
        self.enum_shortname = ""
        self.enum_qualified = True
        self.enum_removed = False
        if not tag.is_empty:
            self.doc.marks["enum_val"] = self.doc.prev_tag_end

    def open_constraints(self, tag: TagStart) -> None:
        if tag.is_empty:
            return
        self.high = NO_SCORE
        self.doc.marks["constraints"] = self.doc.prev_tag_end

    def open_constraint(self, tag: TagStart) -> None:
        if not tag.is_empty:
            self.selectors = {}
            self.sense = False

    def open_arg_defval(self, tag: TagStart) -> None:
        if "constraints" not in self.nesting and "enum_val" not in self.nesting:
            self.doc.marks["arg_defval"] = self.doc.prev_tag_end

    def end_tag(self, tag: TagEnd) -> None:
        if tag.name == self.root and not self.scanner.in_header:
            self.doc.marks["option"] = self.doc.prev_tag_end
        super().end_tag(tag)

    def close_en(self) -> None:
        if "arg_shortname" in self.nesting:
            self.shortname = self.body
        elif "ev_shortname" in self.nesting:
            self.enum_shortname = self.body

    def close_arg_max(self) -> None:
        if self.option_type in NUMERIC_TYPES:
            self.max_value = parse_number(self.body)

    def close_arg_min(self) -> None:
        if self.option_type in NUMERIC_TYPES:
            self.min_value = parse_number(self.body)

    def close_printer(self) -> None:
        if "constraint" in self.nesting:
            self.selectors["printer"] = strip_prefix(self.body, "printer/")

    def close_make(self) -> None:
        if "constraint" in self.nesting:
            self.selectors["make"] = self.body

    def close_model(self) -> None:
        if "constraint" in self.nesting:
            self.selectors["model"] = self.body

    def close_driver(self) -> None:
        if "constraint" in self.nesting:
            self.selectors["driver"] = self.body

    def close_arg_defval(self) -> None:
        if "constraint" in self.nesting:
            self.selectors["default"] = self.body
        elif self.cut_marked("arg_defval"):
            # re-inserted at the end together with the resolved default
            self.builtin_default = self.body

    def close_constraint(self) -> None:
        constraint = Constraint(sense=self.sense, **self.selectors)
        if constraint.is_null:
            logger.warning(
                "Illegal null constraint in %s, line %d!",
                self.doc.name,
                self.scanner.line,
            )
            return
        if constraint.has_both_selectors:
            logger.warning(
                "Both printer id and make/model in constraint in %s, line %d!",
                self.doc.name,
                self.scanner.line,
            )
            return

        score = score_constraint(constraint, self.context)
        logger.debug(
            "      Scores for this constraint: printer: %d, driver: %d "
            "(highest: %d, %d)",
            score.printer,
            score.driver,
            self.high.printer,
            self.high.driver,
        )
        if not constraint_wins(score, self.high):
            return

        self.high = MatchScore(
            max(score.printer, self.high.printer), max(score.driver, self.high.driver)
        )
        if "enum_val" in self.nesting:
            self.enum_qualified = constraint.sense
        else:
            self.option_qualified = constraint.sense
            self.constraint_default = constraint.default

    def close_constraints(self) -> None:
        if "enum_val" in self.nesting:
            if not self.enum_qualified:
                self.enum_removed = True
        elif not self.option_qualified:
            raise DocumentDiscarded("Option does not apply")

        if self.enum_removed and "enum_val" in self.nesting:
            # the whole choice goes, constraints included
            self.doc.marks.pop("constraints", None)
            return
        if self.cut_marked("constraints"):
            logger.debug("    Removing constraints block")

    def close_enum_val(self) -> None:
        if self.enum_removed:
            logger.debug("    Removing enumeration value %s", self.enum_id)
            self.cut_marked("enum_val")
            return
        self.doc.marks.pop("enum_val", None)
        if self.enum_count is not None:
            self.enum_count += 1
        if self.enum_shortname:
            self.choices.setdefault(self.enum_shortname, self.enum_id)

    def close_option(self) -> None:
        if self.enum_count == 0:
            raise DocumentDiscarded("No enumeration value applies")
        if not self.option_qualified:
            raise DocumentDiscarded("Option is not qualified by any constraint")

        position = self.doc.marks.pop("option", None)
        value = self.resolve_default()
        if value and position is not None:
            line = f"\n  <arg_defval>{value}</arg_defval>"
            logger.debug("    Inserting default value: %s", value)
            insert_before(self.doc, position, line)

    def user_default(self) -> str | None:
        if not self.shortname:
            return None
        value = resolve_user_default(
            self.context.defaults, self.shortname, self.option_type
        )
        if value is None:
            return None
        if self.option_type in NUMERIC_TYPES:
            number = parse_number(value)
            if self.max_value is not None and number > self.max_value:
                return None
            if self.min_value is not None and number < self.min_value:
                return None
        if self.option_type == "enum":
            return self.choices.get(value)
        return value

    def resolve_default(self) -> str:
        """User setting, then the winning constraint's default, then the file's own."""
        user_value = self.user_default()
        if user_value:
            return user_value
        return self.constraint_default or self.builtin_default


# ===--- Catalog driver mode ---=== #


class CatalogDriverMode(ModeStrategy):
    """Driver XML file of the overview: record which printers it drives."""

    root = "driver"
    roles = (
        "driver",
        "printers",
        "comments",
        "execution",
        "id",
        "functionality",
        "printer",
        "prototype",
    )

    def __init__(self, context: RunContext):
        super().__init__(context)
        self.driver_name = ""
        self.printer_id = ""
        self.functionality = ""
        self.has_prototype = False

    def attr_driver(self, key: str, value: str) -> None:
        if key == "id":
            self.driver_name = strip_prefix(value, "driver/")

    def open_printer(self, tag: TagStart) -> None:
        if not tag.is_empty:
            self.printer_id = ""
            self.functionality = ""

    def open_functionality(self, tag: TagStart) -> None:
        self.doc.marks["functionality"] = self.doc.tag_start

    def open_prototype(self, tag: TagStart) -> None:
        self.doc.marks["prototype"] = self.doc.prev_tag_end

    def open_printers(self, tag: TagStart) -> None:
        self.doc.marks["printers"] = self.doc.prev_tag_end

    def open_comments(self, tag: TagStart) -> None:
        self.doc.marks["comments"] = self.doc.prev_tag_end

    def close_printers(self) -> None:
        if self.cut_marked("printers"):
            logger.debug("    Removing <printers> block")

    def close_comments(self) -> None:
        if "printer" in self.nesting:
            self.doc.marks.pop("comments", None)
        elif self.cut_marked("comments"):
            logger.debug("    Removing <comments> block")

    def close_id(self) -> None:
        table = self.context.id_table
        self.printer_id = table.translate(strip_prefix(self.body, "printer/"))

    def close_functionality(self) -> None:
        self.functionality = self.marked_text("functionality")

    def close_printer(self) -> None:
        if not self.printer_id or not self.driver_name:
            return
        logger.debug(
            "    Overview: Add driver %s to printer %s", self.driver_name, self.printer_id
        )
        entry = self.context.printers.get_or_create(self.printer_id)
        entry.add_driver(self.driver_name, self.functionality or None)

    def close_prototype(self) -> None:
        if self.context.ppd_filter is not None:
            if not self.body.strip():
                self.reject("empty command line prototype")
            self.has_prototype = True
            proto = self.context.printers.get_or_create(PROTO_PRINTER_ID)
            proto.add_driver(self.driver_name)
        self.cut_marked("prototype")

    def reject(self, reason: str) -> None:
        self.context.printers.retract_driver(self.driver_name)
        raise DocumentDiscarded(f"Driver {self.driver_name} does not produce PPDs: {reason}")

    def finish(self) -> None:
        if self.context.ppd_filter is not None and not self.has_prototype:
            self.reject("no command line prototype")


# ===--- Catalog printer mode ---=== #


def show_combo(ppd_filter: PPDFilter | None, has_prototype: bool, has_ppd: bool) -> bool:
    """Whether a printer/driver combo belongs in the overview.

    Without a filter every combo is listed. For the CUPS PPD list a combo
    needs a driver with a command line prototype (unless a ready-made PPD
    exists and ready-made PPDs are suppressed) or a ready-made PPD while
    ready-made PPDs are listed.
    """
    if ppd_filter is None:
        return True
    lists_ready_made = ppd_filter is PPDFilter.WITH_READY_MADE
    if has_prototype and (not has_ppd or lists_ready_made):
        return True
    return has_ppd and lists_ready_made


@dataclass(frozen=True)
class PrinterSummary:
    printer_id: str
    make: str
    model: str
    functionality: str
    unverified: bool = False
    driver: str = ""
    autodetect: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.printer_id and self.make and self.model and self.functionality)


class CatalogPrinterMode(ModeStrategy):
    """Printer XML file of the overview: replaced by a condensed entry."""

    root = "printer"
    roles = (
        "printer",
        "make",
        "model",
        "functionality",
        "unverified",
        "drivers",
        "lang",
        "driver",
        "postscript",
        "id",
        "ppd",
        "autodetect",
    )

    def __init__(self, context: RunContext):
        super().__init__(context)
        self.printer_id = ""
        self.make = ""
        self.model = ""
        self.functionality = ""
        self.unverified = False
        self.recommended_driver = ""
        self.autodetect = ""
        self.driver_id = ""
        self.ppd = ""
        self.ppds: list[PpdRef] = []

    def attr_printer(self, key: str, value: str) -> None:
        if key == "id":
            self.printer_id = self.context.id_table.translate(
                strip_prefix(value, "printer/")
            )

    def open_unverified(self, tag: TagStart) -> None:
        self.unverified = True

    def open_driver(self, tag: TagStart) -> None:
        if "drivers" in self.nesting and not tag.is_empty:
            self.driver_id = ""
            self.ppd = ""

    def open_postscript(self, tag: TagStart) -> None:
        if "lang" in self.nesting and not tag.is_empty:
            self.driver_id = ""
            self.ppd = ""

    def open_autodetect(self, tag: TagStart) -> None:
        self.doc.marks["autodetect"] = self.doc.tag_start

    def close_make(self) -> None:
        if "autodetect" not in self.nesting:
            self.make = self.body

    def close_model(self) -> None:
        if "autodetect" not in self.nesting:
            self.model = self.body

    def close_functionality(self) -> None:
        self.functionality = self.body

    def close_driver(self) -> None:
        if "drivers" in self.nesting or "lang" in self.nesting:
            self.record_combo()
        else:
            self.recommended_driver = self.body

    def close_postscript(self) -> None:
        if "lang" in self.nesting:
            self.record_combo()

    def close_id(self) -> None:
        self.driver_id = self.body

    def close_ppd(self) -> None:
        self.ppd = self.body.lstrip()

    def close_autodetect(self) -> None:
        self.autodetect = self.marked_text("autodetect")

    def record_combo(self) -> None:
        driver = self.driver_id
        if not driver or not self.printer_id:
            return
        printers = self.context.printers
        ppd_filter = self.context.ppd_filter
        has_prototype = ppd_filter is not None and printers.has_prototype(driver)
        if show_combo(ppd_filter, has_prototype, bool(self.ppd)):
            logger.debug("    Overview: %s/%s: Adding driver", self.printer_id, driver)
            printers.get_or_create(self.printer_id).add_driver(driver)
        else:
            entry = printers.get(self.printer_id)
            if entry is not None and entry.remove_driver(driver):
                logger.debug(
                    "    Overview: %s/%s: Removed driver", self.printer_id, driver
                )
        if self.ppd and ppd_filter is not PPDFilter.NO_READY_MADE:
            self.ppds.append(PpdRef(driver, self.ppd))

    def summary(self) -> PrinterSummary:
        return PrinterSummary(
            printer_id=self.printer_id,
            make=self.make,
            model=self.model,
            functionality=self.functionality,
            unverified=self.unverified,
            driver=self.recommended_driver,
            autodetect=self.autodetect,
        )

    def finish(self) -> None:
        summary = self.summary()
        if not summary.is_complete:
            logger.debug("    Incomplete printer entry, nothing to render")
            self.doc.replace("")
            return
        entry = self.context.printers.consume(summary.printer_id)
        self.doc.replace(render_printer_summary(summary, entry, self.ppds))


# ===--- Engine ---=== #


def parse_document(doc: Document, mode: ModeStrategy) -> bool:
    """Scan and rewrite one document in place.

    Returns whether the document itself confirmed the requested
    printer/driver combo (Device and Driver mode). A document which does
    not apply is cleared and flagged with doc.discarded.

    Raises:
        ComboError: Malformed markup or a printer file without make/model.
    """
    scanner = TagScanner(doc)
    mode.begin(doc, scanner)
    try:
        for event in scanner.events():
            mode.feed(event)
        mode.finish()
    except DocumentDiscarded as reason:
        logger.debug("    %s: %s", doc.name, reason)
        doc.discard()
    return mode.combo_confirmed


# ===--- Renderers ---=== #


def _driver_lines(drivers: list[DriverRef], always: bool) -> list[str]:
    lines: list[str] = []
    if drivers or always:
        lines.append("    <drivers>")
        lines.extend(f"      <driver>{ref.name}</driver>" for ref in drivers)
        lines.append("    </drivers>")
    exceptions = [ref for ref in drivers if ref.functionality is not None]
    if exceptions:
        lines.append("    <driverfunctionalityexceptions>")
        for ref in exceptions:
            lines.append("      <driverfunctionalityexception>")
            lines.append(f"        <driver>{ref.name}</driver>")
            lines.append(ref.functionality)
            lines.append("      </driverfunctionalityexception>")
        lines.append("    </driverfunctionalityexceptions>")
    return lines


def render_printer_summary(
    summary: PrinterSummary,
    entry: PrinterEntry | None,
    ppds: list[PpdRef],
) -> str:
    lines = [
        "  <printer>",
        f"    <id>{summary.printer_id}</id>",
        f"    <make>{summary.make}</make>",
        f"    <model>{summary.model}</model>",
        f"    <functionality>{summary.functionality}</functionality>",
    ]
    if summary.unverified:
        lines.append(f"    <unverified>{summary.functionality}</unverified>")
    if summary.driver:
        lines.append(f"    <driver>{summary.driver}</driver>")
    if summary.autodetect:
        lines.append(f"    {summary.autodetect}")
    if entry is not None:
        lines.extend(_driver_lines(entry.drivers, always=True))
    if ppds:
        lines.append("    <ppds>")
        for ref in ppds:
            lines.append("      <ppd>")
            lines.append(f"        <driver>{ref.driver}</driver>")
            lines.append(f"        <ppdfile>{ref.ppd}</ppdfile>")
            lines.append("      </ppd>")
        lines.append("    </ppds>")
    lines.append("  </printer>")
    lines.append("")
    return "\n".join(lines)


def render_leftover_printer(entry: PrinterEntry) -> str:
    """Entry for a printer only mentioned in driver files."""
    make, model = guess_make_model(entry.id)
    lines = [
        "  <printer>",
        f"    <id>{entry.id}</id>",
        f"    <make>{make}</make>",
        f"    <model>{model}</model>",
        "    <noxmlentry />",
    ]
    lines.extend(_driver_lines(entry.drivers, always=False))
    lines.append("  </printer>")
    lines.append("")
    return "\n".join(lines)


def format_combo(printer: str, driver: str, options: Iterable[str]) -> str:
    return (
        f"<foomatic>\n{printer}{driver}\n<options>\n"
        + "".join(options)
        + "</options>\n</foomatic>\n"
    )


def synthesize_printer_document(printer_id: str) -> str:
    """Stand-in for a printer without its own XML file."""
    make, model = guess_make_model(printer_id)
    return (
        f'<printer id="printer/{printer_id}">\n'
        f" <make>{make}</make>\n"
        f" <model>{model}</model>\n"
        " <mechanism>\n"
        "  <color />\n"
        " </mechanism>\n"
        " <noxmlentry />\n"
        "</printer>\n"
    )


def synthesize_driver_document(driver: str, printer_id: str) -> str:
    """Stand-in for a driver only known from the printer's driver list."""
    return (
        f'<driver id="driver/{driver}">\n'
        f" <name>{driver}</name>\n"
        " <url></url>\n"
        " <execution>\n"
        "  <filter />\n"
        "  <prototype></prototype>\n"
        " </execution>\n"
        " <printers>\n"
        "  <printer>\n"
        f"   <id>printer/{printer_id}</id>\n"
        "  </printer>\n"
        " </printers>\n"
        "</driver>"
    )


# ===--- Catalog aggregation ---=== #


class CatalogAggregator:
    """Builds the overview in two strict passes: drivers, then printers."""

    DRIVER_PASS = "drivers"
    PRINTER_PASS = "printers"
    DONE = "done"

    def __init__(self, context: RunContext):
        self.context = context
        self.phase = self.DRIVER_PASS
        if context.ppd_filter is not None:
            # drivers with a command line prototype are collected here
            context.printers.get_or_create(PROTO_PRINTER_ID)

    def add_driver(self, doc: Document) -> str | None:
        if self.phase != self.DRIVER_PASS:
            raise RuntimeError("Driver documents must be processed before printers")
        parse_document(doc, CatalogDriverMode(self.context))
        if doc.discarded:
            return None
        return doc.text()

    def add_printer(self, doc: Document) -> str:
        if self.phase == self.DONE:
            raise RuntimeError("Catalog already finished")
        self.phase = self.PRINTER_PASS
        parse_document(doc, CatalogPrinterMode(self.context))
        return doc.text()

    def finish(self) -> list[str]:
        """Render and drop the printers which have no XML file of their own."""
        self.phase = self.DONE
        rendered: list[str] = []
        for entry in self.context.printers.drain():
            if entry.id == PROTO_PRINTER_ID:
                continue
            logger.debug("    Printer only mentioned in driver XML files: %s", entry.id)
            rendered.append(render_leftover_printer(entry))
        return rendered


# ===--- Database access ---=== #


@dataclass(frozen=True)
class DatabasePaths:
    libdir: Path

    @property
    def source(self) -> Path:
        return self.libdir / "db" / "source"

    @property
    def printer_dir(self) -> Path:
        return self.source / "printer"

    @property
    def driver_dir(self) -> Path:
        return self.source / "driver"

    @property
    def option_dir(self) -> Path:
        return self.source / "opt"

    @property
    def id_table(self) -> Path:
        return self.libdir / "db" / "oldprinterids"

    def printer_file(self, printer_id: str) -> Path:
        return self.printer_dir / f"{printer_id}.xml"

    def driver_file(self, driver: str) -> Path:
        return self.driver_dir / f"{driver}.xml"


def load_file(path: Path) -> bytes | None:
    """Whole file content, or None when it is missing, unreadable or empty."""
    try:
        data = Path(path).read_bytes()
    except OSError:
        return None
    return data or None


def load_document(path: Path) -> Document:
    data = load_file(path)
    if data is None:
        raise ComboError(
            "UNREADABLE_FILE", "File corrupted, missing, or not readable", str(path)
        )
    return Document(data, str(path))


def list_xml_files(directory: Path) -> list[Path]:
    try:
        entries = sorted(Path(directory).iterdir())
    except OSError as err:
        raise ComboError(
            "UNREADABLE_DIRECTORY", f"Cannot read directory: {err}", str(directory)
        ) from err
    return [path for path in entries if path.name.endswith(".xml") and path.is_file()]


# ===--- Runs ---=== #


def load_printer_document(
    paths: DatabasePaths, printer_id: str, id_table: IdTable
) -> tuple[Document, str]:
    """Printer document for printer_id and the ID actually used.

    Falls back to the translated ID, then to a synthesized document.
    """
    path = paths.printer_file(printer_id)
    data = load_file(path)
    if data is not None:
        return Document(data, str(path)), printer_id

    translated = id_table.translate(printer_id)
    path = paths.printer_file(translated)
    data = load_file(path)
    if data is None:
        logger.info("No printer file for %s, using a generated entry", translated)
        return Document(synthesize_printer_document(translated), str(path)), translated
    logger.warning("Obsolete printer ID used, using %s instead!", translated)
    return Document(data, str(path)), translated


def run_combo(config: ComboConfig) -> str:
    """Compute the combo XML for one printer/driver pair.

    Raises:
        ComboError: Malformed database files, missing driver file for an
            unconfirmed combo, or a printer the driver does not support.
    """
    paths = DatabasePaths(config.libdir)
    id_table = load_id_table(paths.id_table)

    printer_doc, printer_id = load_printer_document(paths, config.printer_id, id_table)
    context = RunContext(
        printer_id=id_table.translate(printer_id),
        driver=config.driver,
        defaults=config.defaults,
        id_table=id_table,
    )

    logger.info("Printer file: %s", printer_doc.name)
    confirmed = parse_document(printer_doc, DeviceMode(context))

    driver_path = paths.driver_file(config.driver)
    logger.info("Driver file: %s", driver_path)
    driver_data = load_file(driver_path)
    options: list[str] = []
    if driver_data is None:
        if not confirmed:
            raise ComboError(
                "UNREADABLE_FILE",
                "Driver file corrupted, missing, or not readable",
                str(driver_path),
            )
        driver_doc = Document(
            synthesize_driver_document(config.driver, printer_id), str(driver_path)
        )
    else:
        driver_doc = Document(driver_data, str(driver_path))
        driver_confirmed = parse_document(driver_doc, DriverMode(context))
        if not confirmed and not driver_confirmed:
            raise ComboError(
                "UNSUPPORTED_COMBO",
                f"The printer {printer_id} is not supported by the driver "
                f"{config.driver}!",
            )
        logger.info(
            "  Driver %s PJL options", "forbids" if context.nopjl else "allows"
        )
        for path in list_xml_files(paths.option_dir):
            option_doc = load_document(path)
            parse_document(option_doc, OptionMode(context))
            if option_doc.discarded:
                logger.info("  Option %s does not apply, removed", path.name)
            else:
                logger.info("  Option %s applies", path.name)
                options.append(option_doc.text())

    return format_combo(printer_doc.text(), driver_doc.text(), options)


def run_overview(config: OverviewConfig) -> str:
    """Compute the overview of all printer/driver combos in the database."""
    paths = DatabasePaths(config.libdir)
    context = RunContext(
        id_table=load_id_table(paths.id_table), ppd_filter=config.ppd_filter
    )
    catalog = CatalogAggregator(context)

    chunks = ["<overview>\n"]
    for path in list_xml_files(paths.driver_dir):
        logger.info("Driver file: %s", path)
        rendered = catalog.add_driver(load_document(path))
        if rendered is not None:
            chunks.append(rendered + "\n")
    for path in list_xml_files(paths.printer_dir):
        logger.info("Printer file: %s", path)
        chunks.append(catalog.add_printer(load_document(path)))
    chunks.extend(catalog.finish())
    chunks.append("</overview>\n")
    return "".join(chunks)


def write_output(text: str) -> None:
    sys.stdout.buffer.write(text.encode(ENCODING, ENCODING_ERRORS))
    sys.stdout.flush()


# ===--- Main ---=== #


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}", file=sys.stderr)
        if err.suggestion:
            print(f"Hint: {err.suggestion}", file=sys.stderr)
        raise SystemExit(1) from err

    configure_logging(config.verbosity)

    try:
        if isinstance(config, OverviewConfig):
            output = run_overview(config)
        else:
            output = run_combo(config)
    except ComboError as err:
        print(f"Error [{err.code}]: {err.message}", file=sys.stderr)
        raise SystemExit(1) from err

    write_output(output)


if __name__ == "__main__":
    main()
