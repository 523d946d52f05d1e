import logging

import pytest

import combo

PAGE_SIZE = """<?xml version="1.0" encoding="UTF-8"?>
<option type="enum" id="opt/PageSize">
 <arg_shortname>
  <en>PageSize</en>
 </arg_shortname>
 <constraints>
  <constraint sense="true">
   <driver>ljet4</driver>
   <arg_defval>ev/Letter</arg_defval>
  </constraint>
 </constraints>
 <enum_vals>
  <enum_val id="ev/Letter">
   <ev_shortname>
    <en>Letter</en>
   </ev_shortname>
  </enum_val>
  <enum_val id="ev/A4">
   <ev_shortname>
    <en>A4</en>
   </ev_shortname>
   <constraints>
    <constraint sense="true">
     <driver>ljet4</driver>
    </constraint>
   </constraints>
  </enum_val>
  <enum_val id="ev/Legal">
   <ev_shortname>
    <en>Legal</en>
   </ev_shortname>
   <constraints>
    <constraint sense="false">
     <make>HP</make>
    </constraint>
   </constraints>
  </enum_val>
 </enum_vals>
</option>
"""

PAGE_SIZE_FOR_LJET4 = """<option type="enum" id="opt/PageSize">
 <arg_shortname>
  <en>PageSize</en>
 </arg_shortname>
 <enum_vals>
  <enum_val id="ev/Letter">
   <ev_shortname>
    <en>Letter</en>
   </ev_shortname>
  </enum_val>
  <enum_val id="ev/A4">
   <ev_shortname>
    <en>A4</en>
   </ev_shortname>
  </enum_val>
 </enum_vals>
  <arg_defval>%s</arg_defval>
</option>
"""

DUPLEX = """<option type="bool" id="opt/Duplex">
 <arg_shortname>
  <en>Duplex</en>
 </arg_shortname>
 <arg_execution>
  <arg_pjl />
 </arg_execution>
 <constraints>
  <constraint sense="true">
   <printer>printer/HP-LaserJet_4</printer>
   <arg_defval>0</arg_defval>
  </constraint>
 </constraints>
</option>
"""

RESOLUTION = """<option type="int" id="opt/Resolution">
 <arg_shortname>
  <en>Resolution</en>
 </arg_shortname>
 <arg_max>1200</arg_max>
 <arg_min>300</arg_min>
 <arg_defval>600</arg_defval>
 <constraints>
  <constraint sense="true">
   <driver>driver/ljet4</driver>
  </constraint>
 </constraints>
</option>
"""


def test_option_mode_trims_choices_and_inserts_default(make_context, run_mode) -> None:
    doc, _confirmed = run_mode(combo.OptionMode, PAGE_SIZE, make_context())

    assert not doc.discarded
    assert doc.text() == PAGE_SIZE_FOR_LJET4 % "ev/Letter"


def _enum_option(declared: int, disqualified: int) -> str:
    lines = [
        '<option type="enum" id="opt/InputSlot">',
        " <arg_shortname>",
        "  <en>InputSlot</en>",
        " </arg_shortname>",
        " <constraints>",
        '  <constraint sense="true">',
        "   <driver>ljet4</driver>",
        "   <arg_defval>ev/Slot0</arg_defval>",
        "  </constraint>",
        " </constraints>",
        " <enum_vals>",
    ]
    for index in range(declared):
        lines.append(f'  <enum_val id="ev/Slot{index}">')
        if index >= declared - disqualified:
            lines += [
                "   <constraints>",
                '    <constraint sense="false">',
                "     <make>HP</make>",
                "    </constraint>",
                "   </constraints>",
            ]
        lines.append("  </enum_val>")
    lines += [" </enum_vals>", "</option>", ""]
    return "\n".join(lines)


@pytest.mark.parametrize(
    ("declared", "disqualified"),
    [(1, 0), (3, 0), (3, 1), (3, 2), (5, 4)],
)
def test_option_mode_keeps_qualified_choices_and_one_default(
    make_context, run_mode, declared: int, disqualified: int
) -> None:
    doc, _confirmed = run_mode(
        combo.OptionMode, _enum_option(declared, disqualified), make_context()
    )

    text = doc.text()
    assert not doc.discarded
    assert text.count("<enum_val ") == declared - disqualified
    assert text.count("<arg_defval>") == 1
    assert "<arg_defval>ev/Slot0</arg_defval>" in text
    for index in range(declared - disqualified, declared):
        assert f'"ev/Slot{index}"' not in text


def test_option_mode_counts_empty_choice_after_removed_one(make_context) -> None:
    text = (
        '<option type="enum" id="opt/InputSlot">\n'
        " <constraints>\n"
        '  <constraint sense="true">\n'
        "   <driver>ljet4</driver>\n"
        "  </constraint>\n"
        " </constraints>\n"
        " <enum_vals>\n"
        '  <enum_val id="ev/1">\n'
        "   <constraints>\n"
        '    <constraint sense="false">\n'
        "     <make>HP</make>\n"
        "    </constraint>\n"
        "   </constraints>\n"
        "  </enum_val>\n"
        '  <enum_val id="ev/2" />\n'
        " </enum_vals>\n"
        "</option>\n"
    )
    doc = combo.Document(text)
    mode = combo.OptionMode(make_context())

    combo.parse_document(doc, mode)

    assert not doc.discarded
    assert mode.enum_count == 1
    assert '<enum_val id="ev/2" />' in doc.text()
    assert "ev/1" not in doc.text()


def test_option_mode_user_default_picks_surviving_choice(make_context, run_mode) -> None:
    context = make_context(defaults=("PageSize=A4",))

    doc, _confirmed = run_mode(combo.OptionMode, PAGE_SIZE, context)

    assert doc.text() == PAGE_SIZE_FOR_LJET4 % "ev/A4"


def test_option_mode_user_default_for_removed_choice_falls_back(
    make_context, run_mode
) -> None:
    context = make_context(defaults=("PageSize=Legal",))

    doc, _confirmed = run_mode(combo.OptionMode, PAGE_SIZE, context)

    assert "<arg_defval>ev/Letter</arg_defval>" in doc.text()
    assert "ev/Legal" not in doc.text()


def test_option_mode_keeps_choice_when_no_constraint_matches(
    make_context, run_mode
) -> None:
    context = make_context(make="Epson", model="Stylus Color", printer_id="Epson-x")

    doc, _confirmed = run_mode(combo.OptionMode, PAGE_SIZE, context)

    assert '<enum_val id="ev/Legal">' in doc.text()
    assert "<constraints>" not in doc.text()


def test_option_mode_discards_unqualified_option(make_context, run_mode) -> None:
    doc, _confirmed = run_mode(combo.OptionMode, PAGE_SIZE, make_context(driver="stcolor"))

    assert doc.discarded
    assert doc.text() == ""


def test_option_mode_discards_enum_without_surviving_choice(
    make_context, run_mode
) -> None:
    text = (
        '<option type="enum" id="opt/Only">\n'
        " <constraints>\n"
        '  <constraint sense="true">\n'
        "   <driver>ljet4</driver>\n"
        "  </constraint>\n"
        " </constraints>\n"
        " <enum_vals>\n"
        '  <enum_val id="ev/Only">\n'
        "   <constraints>\n"
        '    <constraint sense="false">\n'
        "     <make>HP</make>\n"
        "    </constraint>\n"
        "   </constraints>\n"
        "  </enum_val>\n"
        " </enum_vals>\n"
        "</option>\n"
    )

    doc, _confirmed = run_mode(combo.OptionMode, text, make_context())

    assert doc.discarded


@pytest.mark.parametrize(
    ("defaults", "expected"),
    [
        ((), "0"),
        (("Duplex",), "1"),
        (("noDuplex",), "0"),
        (("Duplex=on",), "1"),
        (("Duplex=maybe",), "0"),
        (("Duplex", "NoDuplex"), "0"),
    ],
)
def test_option_mode_bool_defaults(
    make_context, run_mode, defaults: tuple[str, ...], expected: str
) -> None:
    doc, _confirmed = run_mode(combo.OptionMode, DUPLEX, make_context(defaults=defaults))

    assert doc.text().endswith(
        f" </arg_shortname>\n <arg_execution>\n  <arg_pjl />\n </arg_execution>\n"
        f"  <arg_defval>{expected}</arg_defval>\n</option>\n"
    )


def test_option_mode_drops_pjl_option_for_nopjl_driver(make_context, run_mode) -> None:
    doc, _confirmed = run_mode(combo.OptionMode, DUPLEX, make_context(nopjl=True))

    assert doc.discarded


def test_option_mode_exact_printer_beats_printer_mismatch(make_context, run_mode) -> None:
    doc, _confirmed = run_mode(
        combo.OptionMode, DUPLEX, make_context(printer_id="HP-LaserJet_5")
    )

    assert doc.discarded


@pytest.mark.parametrize("exact_first", [True, False])
def test_option_mode_exact_printer_veto_beats_make_match(
    make_context, run_mode, exact_first: bool
) -> None:
    exact = (
        '  <constraint sense="false">\n'
        "   <printer>printer/HP-LaserJet_4</printer>\n"
        "  </constraint>\n"
    )
    by_make = '  <constraint sense="true">\n   <make>HP</make>\n  </constraint>\n'
    constraints = exact + by_make if exact_first else by_make + exact
    text = (
        '<option type="bool" id="opt/Economode">\n'
        " <constraints>\n" + constraints + " </constraints>\n"
        "</option>\n"
    )

    doc, _confirmed = run_mode(combo.OptionMode, text, make_context())

    assert doc.discarded


def test_option_mode_reinserts_builtin_default_once(make_context, run_mode) -> None:
    doc, _confirmed = run_mode(combo.OptionMode, RESOLUTION, make_context())

    assert doc.text() == (
        '<option type="int" id="opt/Resolution">\n'
        " <arg_shortname>\n"
        "  <en>Resolution</en>\n"
        " </arg_shortname>\n"
        " <arg_max>1200</arg_max>\n"
        " <arg_min>300</arg_min>\n"
        "  <arg_defval>600</arg_defval>\n"
        "</option>\n"
    )


@pytest.mark.parametrize(
    ("setting", "expected"),
    [
        ("Resolution=900", "900"),
        ("Resolution=1200", "1200"),
        ("Resolution=2400", "600"),
        ("Resolution=100", "600"),
        ("Resolution=high", "600"),
    ],
)
def test_option_mode_numeric_defaults_respect_bounds(
    make_context, run_mode, setting: str, expected: str
) -> None:
    context = make_context(defaults=(setting,))

    doc, _confirmed = run_mode(combo.OptionMode, RESOLUTION, context)

    assert doc.text().count("<arg_defval>") == 1
    assert f"<arg_defval>{expected}</arg_defval>" in doc.text()


def test_option_mode_warns_about_null_constraint(make_context, run_mode, caplog) -> None:
    text = RESOLUTION.replace("   <driver>driver/ljet4</driver>\n", "")

    with caplog.at_level(logging.WARNING, logger="combo"):
        doc, _confirmed = run_mode(combo.OptionMode, text, make_context(), name="res.xml")

    assert doc.discarded
    assert "Illegal null constraint in res.xml, line 10!" in caplog.text


def test_option_mode_warns_about_printer_and_make(make_context, run_mode, caplog) -> None:
    text = DUPLEX.replace(
        "   <arg_defval>0</arg_defval>\n", "   <make>HP</make>\n   <arg_defval>0</arg_defval>\n"
    )

    with caplog.at_level(logging.WARNING, logger="combo"):
        doc, _confirmed = run_mode(combo.OptionMode, text, make_context())

    assert doc.discarded
    assert "Both printer id and make/model in constraint" in caplog.text


def _constraint_score(context: combo.RunContext, **fields: str) -> combo.MatchScore:
    return combo.score_constraint(combo.Constraint(sense=True, **fields), context)


@pytest.mark.parametrize(
    ("fields", "expected"),
    [
        ({"printer": "HP-LaserJet_4"}, (2, 0)),
        ({"printer": "HP-LaserJet_5"}, (-1, 0)),
        ({"make": "HP"}, (1, 0)),
        ({"make": "HP", "model": "LaserJet 4"}, (2, 0)),
        ({"make": "HP", "model": "LaserJet 5"}, (-1, 0)),
        ({"make": "Epson"}, (-1, 0)),
        ({"model": "LaserJet 4"}, (0, 0)),
        ({"driver": "ljet4"}, (0, 1)),
        ({"driver": "driver/ljet4"}, (0, 1)),
        ({"make": "HP", "driver": "stcolor"}, (1, -1)),
    ],
)
def test_score_constraint(make_context, fields: dict[str, str], expected: tuple[int, int]) -> None:
    assert _constraint_score(make_context(), **fields) == expected


def test_score_constraint_translates_printer_ids(make_context) -> None:
    context = make_context(id_table=combo.parse_id_table("HP-LJ4 HP-LaserJet_4\n"))

    assert _constraint_score(context, printer="HP-LJ4") == (2, 0)


@pytest.mark.parametrize(
    ("score", "high", "wins"),
    [
        ((0, 0), (0, 0), False),
        ((1, -1), (0, 0), False),
        ((1, 0), (0, 0), True),
        ((0, 1), (1, 0), False),
        ((1, 1), (1, 0), True),
        ((2, -1), (0, 0), False),
        ((2, 0), (2, 1), True),
        ((1, 0), (2, 0), False),
    ],
)
def test_constraint_wins(
    score: tuple[int, int], high: tuple[int, int], wins: bool
) -> None:
    assert combo.constraint_wins(combo.MatchScore(*score), combo.MatchScore(*high)) is wins


@pytest.mark.parametrize(
    ("settings", "shortname", "option_type", "expected"),
    [
        (["PageSize=A4"], "PageSize", "enum", "A4"),
        (["PageSize"], "PageSize", "enum", None),
        (["Duplex"], "Duplex", "bool", "1"),
        (["noDuplex"], "Duplex", "bool", "0"),
        (["NODuplex"], "Duplex", "bool", "0"),
        (["Duplex=Yes"], "Duplex", "bool", "1"),
        (["Duplex=off"], "Duplex", "bool", "0"),
        (["Duplex=1"], "Duplex", "bool", "1"),
        (["Duplex=maybe"], "Duplex", "bool", None),
        (["Duplex=yes", "Duplex=maybe"], "Duplex", "bool", None),
        (["Duplex=no", "Duplex"], "Duplex", "bool", "1"),
        (["DuplexMode=on"], "Duplex", "bool", None),
        (["Res=600"], "Res", "int", "600"),
        (["Res=6x"], "Res", "int", None),
        (["Res=-1.5e2"], "Res", "float", "-1.5e2"),
        (["Res=1,5"], "Res", "float", None),
    ],
)
def test_resolve_user_default(
    settings: list[str], shortname: str, option_type: str, expected: str | None
) -> None:
    assert combo.resolve_user_default(settings, shortname, option_type) == expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [("12abc", 12.0), ("abc", 0.0), ("-1.5e2x", -150.0), (" 3", 3.0), (".5", 0.5)],
)
def test_parse_number(text: str, expected: float) -> None:
    assert combo.parse_number(text) == expected
