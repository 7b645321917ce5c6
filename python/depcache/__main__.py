"""CLI entry point: python3 -m depcache

Modes:
  --command/--project/--args  Single-shot command, JSON result on stdout
  --sidecar                   Persistent stdin/stdout JSON-RPC loop

Build events are logged through the stdlib logging module; pass --verbose
to see them on stderr.
"""

import argparse
import json
import logging
import sys
import traceback

from .diagnostics import format_diagnostics
from .errors import CompileError, DepcacheError

logger = logging.getLogger("depcache")


def main():
    parser = argparse.ArgumentParser(
        prog="depcache",
        description="Dependency-isolated build cache",
    )
    parser.add_argument("--sidecar", action="store_true",
                        help="Run as persistent sidecar (stdin/stdout JSON-RPC)")
    parser.add_argument("--command",
                        help="fingerprint, manifest, stub, build, lookup, entries, evict, recipe or diagnostics")
    parser.add_argument("--project", help="Project path")
    parser.add_argument("--args", default="{}", help="JSON-encoded arguments")
    parser.add_argument("--cache-dir", help="Cache root (overrides DEPCACHE_CACHE_DIR)")
    parser.add_argument("--reconcile-mode", choices=("mtime", "hash"),
                        help="How application sources are marked stale")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log build events to stderr")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )

    if args.sidecar:
        _run_sidecar()
    else:
        if not args.command or not args.project:
            parser.error("--command and --project are required (or use --sidecar)")
        _run_single(args)


def _command_args(args) -> dict:
    try:
        extra_args = json.loads(args.args)
    except json.JSONDecodeError as e:
        _error_exit("InvalidArgs", f"Failed to parse --args JSON: {e}")
    if not isinstance(extra_args, dict):
        _error_exit("InvalidArgs", "--args must be a JSON object")
    # Flags win over the same keys in --args
    if args.cache_dir:
        extra_args["cache_dir"] = args.cache_dir
    if args.reconcile_mode:
        extra_args["reconcile_mode"] = args.reconcile_mode
    return extra_args


def _run_single(args):
    """Single-shot mode."""
    extra_args = _command_args(args)

    try:
        from .commands import dispatch
        result = dispatch(args.command, args.project, extra_args)
        json.dump(result, sys.stdout)
        sys.stdout.write("\n")
    except CompileError as e:
        if e.diagnostics:
            sys.stderr.write(format_diagnostics(e.diagnostics) + "\n")
        _error_exit(type(e).__name__, e.message, details=e.to_dict())
    except DepcacheError as e:
        _error_exit(type(e).__name__, e.message, details=e.to_dict())
    except FileNotFoundError as e:
        _error_exit("FileNotFoundError", str(e))
    except Exception as e:
        _error_exit(type(e).__name__, str(e))


def _respond(resp: dict):
    sys.stdout.write(json.dumps(resp) + "\n")
    sys.stdout.flush()


def _run_sidecar():
    """Persistent sidecar: one JSON request per stdin line, one response per stdout line."""
    from .commands import dispatch

    _respond({"status": "ready"})

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue

        try:
            req = json.loads(line)
        except json.JSONDecodeError as e:
            _respond({"id": None, "error": {"type": "InvalidJSON", "message": str(e)}})
            continue

        req_id = req.get("id")
        try:
            result = dispatch(req.get("command", ""), req.get("project", ""), req.get("args", {}))
            resp = {"id": req_id, "result": result}
        except DepcacheError as e:
            resp = {"id": req_id, "error": e.to_dict()}
        except Exception as e:
            logger.debug("sidecar.request_failed", exc_info=True, extra={"request_id": req_id})
            resp = {"id": req_id, "error": {"type": type(e).__name__, "message": str(e)}}

        _respond(resp)


def _error_exit(error_type: str, message: str, details: dict | None = None):
    """Write structured error to stderr and exit."""
    error = {
        "error": error_type,
        "message": message,
        "traceback": traceback.format_exc(),
    }
    if details:
        error["details"] = details
    json.dump(error, sys.stderr)
    sys.stderr.write("\n")
    sys.exit(1)


if __name__ == "__main__":
    main()
