"""CLI entry point for bubble-exam.

Usage:
  python -m bubble_exam serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m bubble_exam stop
  python -m bubble_exam restart [--port PORT]
  python -m bubble_exam status
  python -m bubble_exam import FILE [FILE ...]
  python -m bubble_exam check
  python -m bubble_exam stats
"""
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "restart":
        _restart(args[1:])
    elif command == "status":
        _status()
    elif command == "import":
        _import_exams(args[1:])
    elif command == "check":
        _check()
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, restart, status, import, check, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _write_pid() -> None:
    PID_FILE.write_text(str(os.getpid()))


def _remove_pid() -> None:
    PID_FILE.unlink(missing_ok=True)


def _stop() -> bool:
    """Stop a running server. Returns True if a server was stopped."""
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        PID_FILE.unlink(missing_ok=True)
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        PID_FILE.unlink(missing_ok=True)
        return False


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    _stop()
    time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["BUBBLE_EXAM_NO_AUTO_IMPORT"] = "1"

    port = int(_parse_flag(args, "--port", "3000"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    _write_pid()

    print(f"Starting Bubble Exam on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "bubble_exam.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        _remove_pid()
        os.environ.pop("BUBBLE_EXAM_NO_AUTO_IMPORT", None)


def _import_exams(args: list[str]):
    from bubble_exam.config import load_settings
    from bubble_exam.db import Database
    from bubble_exam.parsers.exam_parser import parse_exam_file

    settings = load_settings()
    paths = [Path(a) for a in args] or settings.resolved_exam_files()
    if not paths:
        print("No exam files given and none found in data/.")
        sys.exit(1)

    db = Database(settings.db_full_path)
    total = 0
    for path in paths:
        if not path.exists():
            print(f"  Skipping (not found): {path}")
            continue
        try:
            exams = parse_exam_file(path)
        except ValueError as e:
            print(f"  Skipping {path.name}: {e}")
            continue
        for exam in exams:
            db.replace_exam(exam)
            print(f"  {exam.id}: {exam.title} ({len(exam.questions)} questions)")
            total += 1

    print(f"\nImported {total} exams, {db.get_exam_count()} in database")
    db.close()


def _check():
    """Report exams whose questions have missing or unusable answer keys."""
    from bubble_exam.config import load_settings
    from bubble_exam.db import Database
    from bubble_exam.parsers.exam_parser import parse_questions
    from bubble_exam.scoring import missing_answer_keys

    settings = load_settings()
    db = Database(settings.db_full_path)
    exams = db.get_exams()
    print(f"Found {len(exams)} exams\n")

    broken = 0
    for exam in exams:
        questions = parse_questions(exam["questions"])
        missing = missing_answer_keys(questions)
        status = "OK" if not missing else f"{len(missing)} missing"
        print(f"{exam['id']:20s} {len(questions):3d} questions  {status}")
        for key in missing:
            print(f"    {key.kind} #{key.index}")
        if missing:
            broken += 1

    db.close()
    if broken:
        print(f"\n{broken} exam(s) have incomplete answer keys")
        sys.exit(1)


def _stats():
    from bubble_exam.config import load_settings
    from bubble_exam.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats()

    print("Bubble Exam Stats")
    print("=" * 40)
    print(f"Packages:           {stats['packages']}")
    print(f"Exams:              {stats['exams']}")
    print(f"Attempts recorded:  {stats['history']}")
    print(f"Average score:      {stats['average_score']}/10")
    db.close()


if __name__ == "__main__":
    main()
