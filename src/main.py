"""
Main entry point for running the media import pipeline.

Crash tracebacks go to the configured logs folder, and the instance lock sits
beside the configured state database, so pipelines with separate state may run
side by side.
"""

import faulthandler
import os
import sys
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config import AppConfig
from models import ConfigurationError
from orchestrator.main import build_parser, main
from utils.instance_guard import InstanceLockError, acquire_instance_lock, lock_path_for

ALLOW_MULTI_INSTANCE_ENV = "MEDIA_IMPORTER_ALLOW_MULTI_INSTANCE"


def _enable_crash_diagnostics(logs_dir: Path) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)
    crash_log = logs_dir / f"crash_traceback_{datetime.now(timezone.utc).strftime('%Y%m%d')}.log"
    crash_stream = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=crash_stream, all_threads=True)

    def _hook(exc_type, exc, tb, thread_name: str = "MainThread"):
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write("\n")
            handle.write(
                f"{datetime.now(timezone.utc).isoformat()} Unhandled exception in {thread_name} (pid {os.getpid()})\n"
            )
            traceback.print_exception(exc_type, exc, tb, file=handle)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook

    def _thread_hook(args):
        name = args.thread.name if args.thread is not None else "unknown thread"
        _hook(args.exc_type, args.exc_value, args.exc_traceback, name)

    threading.excepthook = _thread_hook


def run(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        config = AppConfig.load(args.config)
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    _enable_crash_diagnostics(config.resolve_path("paths", "logs", default="logs"))
    if os.environ.get(ALLOW_MULTI_INSTANCE_ENV) == "1":
        main(argv)
        return

    state_db = config.resolve_path("databases", "state", default="data/state.sqlite")
    try:
        lock = acquire_instance_lock(lock_path_for(state_db), config_dir=str(config.root_dir))
    except InstanceLockError as exc:
        print(
            f"ERROR: {exc}\n"
            f"If this is a mistake, close the other process or set {ALLOW_MULTI_INSTANCE_ENV}=1 to override.",
            file=sys.stderr,
        )
        raise SystemExit(2) from exc
    with lock:
        main(argv)


if __name__ == "__main__":
    run()
