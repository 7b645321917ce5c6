"""
Compiler diagnostics extraction.

Turns raw compiler output into structured records that are attached to
DependencyCompileError / ApplicationCompileError, so a failed build reports
file, line and message instead of a wall of stderr.

Supports:
- rustc / cargo human-readable output ("error[E0425]: ..." + " --> file:line:col")
- cargo JSON output (--message-format=json, "compiler-message" records)
- gcc/clang style "file:line:col: error: message" lines
"""

import json
import re

_RUST_HEADER = re.compile(r"^(error|warning)(?:\[(\w+)\])?:\s*(.+)$")
_RUST_LOCATION = re.compile(r"^\s*-->\s*(.+?):(\d+):(\d+)\s*$")
_GCC_LINE = r"(.+?):(\d+):(\d+):\s*(error|warning|fatal error):\s*(.+)"


def _parse_line_based(text: str, pattern: str, source: str) -> list[dict]:
    """Parse line-based compiler output into diagnostics."""
    diagnostics = []
    if not text.strip():
        return diagnostics
    for line in text.strip().split("\n"):
        match = re.match(pattern, line)
        if match:
            groups = match.groups()
            diagnostics.append({
                "file": groups[0],
                "line": int(groups[1]),
                "column": int(groups[2]),
                "severity": "error" if groups[3].endswith("error") else groups[3],
                "message": groups[4],
                "rule": "",
                "source": source,
            })
    return diagnostics


def _parse_rustc_human(text: str) -> list[dict]:
    diagnostics = []
    pending: dict | None = None
    for line in text.splitlines():
        header = _RUST_HEADER.match(line)
        if header:
            if pending is not None:
                diagnostics.append(pending)
            pending = {
                "file": "",
                "line": 0,
                "column": 0,
                "severity": header.group(1),
                "message": header.group(3),
                "rule": header.group(2) or "",
                "source": "rustc",
            }
            continue
        location = _RUST_LOCATION.match(line)
        if location and pending is not None and not pending["file"]:
            pending["file"] = location.group(1)
            pending["line"] = int(location.group(2))
            pending["column"] = int(location.group(3))
    if pending is not None:
        diagnostics.append(pending)
    # "error: could not compile `x`" summaries carry no location and repeat the above
    return [
        d for d in diagnostics
        if d["file"] or not d["message"].startswith(("could not compile", "aborting due to"))
    ]


def _parse_cargo_json(stdout: str) -> list[dict]:
    diagnostics = []
    for line in (stdout or "").strip().split("\n"):
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict) or data.get("reason") != "compiler-message":
            continue
        msg = data.get("message", {})
        spans = msg.get("spans", [])
        span = spans[0] if spans else {}
        code = msg.get("code") or {}
        diagnostics.append({
            "file": span.get("file_name", ""),
            "line": span.get("line_start", 0),
            "column": span.get("column_start", 0),
            "severity": msg.get("level", "error"),
            "message": msg.get("message", ""),
            "rule": code.get("code", ""),
            "source": "cargo",
        })
    return diagnostics


def parse_compiler_output(stdout: str, stderr: str) -> list[dict]:
    """Extract diagnostics from a compiler run, errors before warnings."""
    diagnostics = _parse_cargo_json(stdout)
    diagnostics.extend(_parse_rustc_human(stderr))
    if not diagnostics:
        diagnostics.extend(_parse_line_based(stderr, _GCC_LINE, "cc"))

    severity_rank = {"error": 0, "warning": 1}
    diagnostics.sort(
        key=lambda d: (severity_rank.get(d.get("severity"), 2), d.get("file", ""), d.get("line", 0))
    )
    return diagnostics


def summarize(diagnostics: list[dict]) -> dict:
    return {
        "diagnostics": diagnostics,
        "error_count": sum(1 for d in diagnostics if d.get("severity") == "error"),
        "warning_count": sum(1 for d in diagnostics if d.get("severity") == "warning"),
    }


def format_diagnostics(diagnostics: list[dict]) -> str:
    """Format diagnostics as concise text, one per line."""
    if not diagnostics:
        return "No diagnostics found."

    lines = []
    for d in diagnostics:
        severity = "E" if d.get("severity") == "error" else "W"
        rule = f" [{d['rule']}]" if d.get("rule") else ""
        lines.append(f"{severity} {d['file']}:{d['line']}:{d['column']}: {d['message']}{rule}")

    return "\n".join(lines)
