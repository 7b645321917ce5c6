"""Tests for compiler diagnostics extraction."""

import json

from depcache.diagnostics import format_diagnostics, parse_compiler_output, summarize

RUSTC_STDERR = """\
   Compiling backend v0.1.0 (/app)
warning: unused variable: `x`
 --> src/main.rs:2:9
  |
2 |     let x = 5;
  |         ^ help: if this is intentional, prefix it with an underscore: `_x`

error[E0425]: cannot find value `y` in this scope
 --> src/main.rs:3:20
  |
3 |     println!("{}", y);
  |                    ^ not found in this scope

error: aborting due to previous error; 1 warning emitted

error: could not compile `backend`
"""


def test_rustc_human_output():
    diagnostics = parse_compiler_output("", RUSTC_STDERR)
    assert len(diagnostics) == 2
    first, second = diagnostics
    assert first["severity"] == "error"
    assert first["rule"] == "E0425"
    assert (first["file"], first["line"], first["column"]) == ("src/main.rs", 3, 20)
    assert first["message"] == "cannot find value `y` in this scope"
    assert second["severity"] == "warning"
    assert second["line"] == 2


def test_cargo_json_output():
    record = {
        "reason": "compiler-message",
        "message": {
            "level": "error",
            "message": "mismatched types",
            "code": {"code": "E0308"},
            "spans": [{"file_name": "src/lib.rs", "line_start": 7, "column_start": 5}],
        },
    }
    stdout = "\n".join([
        json.dumps({"reason": "compiler-artifact"}),
        json.dumps(record),
        json.dumps({"reason": "build-finished", "success": False}),
    ])
    diagnostics = parse_compiler_output(stdout, "")
    assert diagnostics == [{
        "file": "src/lib.rs",
        "line": 7,
        "column": 5,
        "severity": "error",
        "message": "mismatched types",
        "rule": "E0308",
        "source": "cargo",
    }]


def test_gcc_style_fallback():
    stderr = "src/native.c:12:3: error: unknown type name 'foo'\nsrc/native.c:4:1: warning: unused\n"
    diagnostics = parse_compiler_output("", stderr)
    assert [d["source"] for d in diagnostics] == ["cc", "cc"]
    assert diagnostics[0]["severity"] == "error"
    assert diagnostics[0]["line"] == 12


def test_location_free_errors_are_kept():
    diagnostics = parse_compiler_output("", "error: failed to get `libA` as a dependency of package `backend`\n")
    assert len(diagnostics) == 1
    assert diagnostics[0]["file"] == ""


def test_empty_output():
    assert parse_compiler_output("", "") == []
    assert format_diagnostics([]) == "No diagnostics found."


def test_summarize_and_format():
    diagnostics = parse_compiler_output("", RUSTC_STDERR)
    summary = summarize(diagnostics)
    assert summary["error_count"] == 1
    assert summary["warning_count"] == 1
    text = format_diagnostics(diagnostics)
    assert text.splitlines()[0] == "E src/main.rs:3:20: cannot find value `y` in this scope [E0425]"
    assert text.splitlines()[1].startswith("W src/main.rs:2:9:")
