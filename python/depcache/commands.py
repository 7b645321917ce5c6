"""Command dispatcher for depcache.

Routes --command values to the appropriate operation.
Called from __main__.py.
"""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

from .config import RECONCILE_MODES, BuildConfig


def dispatch(command: str, project: str, args: dict) -> dict:
    """Dispatch a command to the appropriate operation.

    Args:
        command: Command name
        project: Project root path
        args: Extra arguments dict

    Returns:
        Dict result of the operation
    """
    if command == "fingerprint":
        from .fingerprint import fingerprint
        toolchain, _ = _toolchain_and_config(args)
        manifest = toolchain.load_manifest(Path(project))
        return {
            "project": project,
            "package": manifest.package,
            "fingerprint": fingerprint(manifest),
            "locked_packages": len(manifest.locked),
        }

    elif command == "manifest":
        toolchain, _ = _toolchain_and_config(args)
        return toolchain.load_manifest(Path(project)).to_dict()

    elif command == "stub":
        toolchain, _ = _toolchain_and_config(args)
        stub = toolchain.synthesize_stub(toolchain.load_manifest(Path(project)))
        return {
            "digest": stub.digest,
            "files": [
                {"path": path, "content": content.decode("utf-8")}
                for path, content in stub.files
            ],
        }

    elif command == "build":
        from .orchestrator import BuildOrchestrator
        toolchain, config = _toolchain_and_config(args)
        orchestrator = BuildOrchestrator(toolchain, _cache(toolchain, config), config)
        result = orchestrator.build(project, output_dir=args.get("output_dir"))
        return result.to_dict()

    elif command == "lookup":
        from .fingerprint import cache_key, fingerprint
        toolchain, config = _toolchain_and_config(args)
        fp = fingerprint(toolchain.load_manifest(Path(project)))
        key = cache_key(fp, toolchain.cache_key_parts())
        entry = _cache(toolchain, config).lookup(key)
        return {
            "fingerprint": fp,
            "cache_key": key,
            "hit": entry is not None,
            "entry": entry.to_dict() if entry else None,
        }

    elif command == "entries":
        toolchain, config = _toolchain_and_config(args)
        entries = _cache(toolchain, config).entries()
        return {
            "cache_dir": str(config.cache_dir),
            "entries": [e.to_dict() for e in entries],
            "entry_count": len(entries),
        }

    elif command == "evict":
        from .dep_cache import MaxAge, MaxEntries, Only
        toolchain, config = _toolchain_and_config(args)
        cache = _cache(toolchain, config)
        removed: set[str] = set()
        if args.get("fingerprints"):
            removed |= cache.evict(Only(frozenset(args["fingerprints"])))
        if args.get("max_entries") is not None:
            removed |= cache.evict(MaxEntries(int(args["max_entries"])))
        if args.get("max_age_days") is not None:
            removed |= cache.evict(MaxAge(float(args["max_age_days"]) * 86400))
        return {"removed": sorted(removed), "removed_count": len(removed)}

    elif command == "recipe":
        from .recipe import DEFAULT_BASE_IMAGE, DEFAULT_WORKDIR, render_dockerfile, render_dockerignore
        toolchain, _ = _toolchain_and_config(args)
        manifest = toolchain.load_manifest(Path(project))
        return {
            "dockerfile": render_dockerfile(
                manifest,
                toolchain,
                base_image=args.get("base_image", DEFAULT_BASE_IMAGE),
                workdir=args.get("workdir", DEFAULT_WORKDIR),
            ),
            "dockerignore": render_dockerignore(toolchain),
        }

    elif command == "diagnostics":
        from .diagnostics import parse_compiler_output, summarize
        log_path = Path(args.get("file", project))
        text = log_path.read_text(errors="replace")
        if _is_json_log(text):
            return summarize(parse_compiler_output(text, ""))
        return summarize(parse_compiler_output("", text))

    else:
        return {"error": "UnknownCommand", "message": f"Unknown command: {command}"}


def _toolchain_and_config(args: dict):
    from .toolchains import get_toolchain

    config = BuildConfig.from_env()
    overrides = {}
    if args.get("cache_dir"):
        overrides["cache_dir"] = Path(args["cache_dir"])
        if not args.get("work_dir"):
            overrides["work_dir"] = Path(args["cache_dir"]) / "work"
    if args.get("work_dir"):
        overrides["work_dir"] = Path(args["work_dir"])
    if args.get("reconcile_mode") in RECONCILE_MODES:
        overrides["reconcile_mode"] = args["reconcile_mode"]
    if args.get("profile"):
        overrides["profile"] = args["profile"]
    if "offline" in args:
        overrides["offline"] = bool(args["offline"])
    if "include_gitignore" in args:
        overrides["include_gitignore"] = bool(args["include_gitignore"])
    config = dataclasses.replace(config, **overrides)

    toolchain = get_toolchain(
        args.get("toolchain", "cargo"),
        profile=config.profile,
        offline=config.offline,
    )
    return toolchain, config


def _cache(toolchain, config: BuildConfig):
    from .dep_cache import DependencyCache
    return DependencyCache(config.cache_dir, volatile_patterns=toolchain.volatile_patterns)


def _is_json_log(text: str) -> bool:
    """True for `cargo --message-format=json` output (first line is a JSON object)."""
    first = next((line for line in text.splitlines() if line.strip()), "")
    try:
        return isinstance(json.loads(first), dict)
    except json.JSONDecodeError:
        return False
