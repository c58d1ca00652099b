"""On-disk roster store: one directory per session.

Layout::

    <root>/<session_id>/session.json   group count, per-group max, source, auto-sync, groups
    <root>/<session_id>/roster.csv     one row per participant

Every write goes through ``apply`` which checks the roster invariants first and
then replaces ``roster.csv`` in one ``os.replace`` so readers never observe a
half-written roster. ``locked`` serialises passes on one session across threads
and processes.
"""

from __future__ import annotations
import argparse, csv, io, json, os, re, sys, threading, time, weakref
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from roster_config import DEFAULT_CONFIG, clamp_group_setting, load_config
from roster_models import (
    Group, InvalidTransitionError, NotFoundError, Participant, RosterError, Session,
    SessionBusyError, Status, by_position, normalize_grouping_key, normalize_skill, trim,
)

ROSTER_FIELDS = ["Id", "Name", "Category", "Skill", "GroupingKey", "Position", "Status", "GroupId"]

SESSION_FILE = "session.json"
ROSTER_FILE = "roster.csv"
LOCK_FILE = ".lock"

# entries vanish once no pass holds a reference to the lock
_THREAD_LOCKS = weakref.WeakValueDictionary()
_THREAD_LOCKS_GUARD = threading.Lock()


def _thread_lock(key: str) -> threading.Lock:
    with _THREAD_LOCKS_GUARD:
        lock = _THREAD_LOCKS.get(key)
        if lock is None:
            lock = _THREAD_LOCKS[key] = threading.Lock()
        return lock


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", trim(name).lower()).strip("-")
    return slug or "session"


def check_invariants(session: Session, participants: Iterable[Participant]) -> None:
    """Raise InvalidTransitionError when a roster would break the capacity/status rules."""
    roster = list(participants)
    active = sum(1 for p in roster if p.status == Status.ACTIVE)
    if active > session.session_cap:
        raise InvalidTransitionError(
            f"{active} active participants exceed the session cap of {session.session_cap}"
        )
    known_groups = {g.id for g in session.groups}
    seated: Dict[str, int] = {}
    positions: Dict[int, str] = {}
    for p in roster:
        if p.position in positions:
            raise InvalidTransitionError(
                f"Participants {positions[p.position]} and {p.id} share position {p.position}"
            )
        positions[p.position] = p.id
        if p.group_id is None:
            continue
        if p.status != Status.ACTIVE:
            raise InvalidTransitionError(f"{p.id} is {p.status.value} but seated in {p.group_id}")
        if p.group_id not in known_groups:
            raise InvalidTransitionError(f"{p.id} is seated in unknown group {p.group_id}")
        seated[p.group_id] = seated.get(p.group_id, 0) + 1
    for gid, n in seated.items():
        if n > session.max_per_group:
            raise InvalidTransitionError(f"Group {gid} holds {n} > {session.max_per_group} participants")


# ------------------------ Row codecs ----------------------------------

def participant_to_row(p: Participant) -> Dict[str, str]:
    return {
        "Id": p.id, "Name": p.name, "Category": p.category, "Skill": str(p.skill),
        "GroupingKey": p.grouping_key or "", "Position": str(p.position),
        "Status": p.status.value, "GroupId": p.group_id or "",
    }


def participant_from_row(row: Dict[str, str], cfg: dict | None = None) -> Participant:
    cfg = cfg or DEFAULT_CONFIG
    try:
        position = int(trim(row.get("Position")))
        status = Status(trim(row.get("Status")).upper())
    except ValueError as exc:
        raise RosterError(f"Malformed roster row {row!r}: {exc}") from exc
    return Participant(
        id=trim(row.get("Id")),
        name=trim(row.get("Name")),
        position=position,
        category=trim(row.get("Category")) or cfg["UNKNOWN_CATEGORY"],
        skill=normalize_skill(row.get("Skill"), cfg),
        grouping_key=normalize_grouping_key(row.get("GroupingKey")),
        status=status,
        group_id=trim(row.get("GroupId")) or None,
    )


def session_to_dict(session: Session) -> dict:
    return asdict(session)


def session_from_dict(data: dict) -> Session:
    groups = [Group(id=str(g["id"]), name=str(g["name"]), order=int(g["order"])) for g in data.get("groups", [])]
    return Session(
        id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        group_count=int(data["group_count"]),
        max_per_group=int(data["max_per_group"]),
        source=str(data.get("source") or ""),
        auto_sync=bool(data.get("auto_sync", False)),
        groups=groups,
    )


def _lock_holder_alive(lock_path: Path) -> bool:
    """False only when the lock file names a pid that no longer exists."""
    try:
        pid = int(lock_path.read_text(encoding="ascii").strip())
    except (OSError, ValueError):
        return True  # gone already, or the holder has not written its pid yet
    if os.name != "posix":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass  # alive, owned by another user
    return True


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    tmp.write_text(text, encoding="utf-8", newline="")
    os.replace(tmp, path)


# ------------------------ Store ---------------------------------------

class RosterStore:
    def __init__(self, root: Path, cfg: dict | None = None):
        self.root = Path(root)
        self.cfg = cfg or DEFAULT_CONFIG

    def session_dir(self, session_id: str) -> Path:
        return self.root / session_id

    def _require(self, session_id: str) -> Path:
        d = self.session_dir(session_id)
        if not (d / SESSION_FILE).exists():
            raise NotFoundError(f"Session '{session_id}' not found under {self.root}")
        return d

    # ---- sessions ----
    def create_session(
        self,
        name: str,
        *,
        session_id: Optional[str] = None,
        source: str = "",
        group_count=None,
        max_per_group=None,
    ) -> Session:
        name = trim(name)
        if not name:
            raise RosterError("Session name is required")
        sid = session_id or slugify(name)
        d = self.session_dir(sid)
        if (d / SESSION_FILE).exists():
            raise RosterError(f"Session '{sid}' already exists")
        count = clamp_group_setting(group_count, self.cfg["DEFAULT_GROUP_COUNT"], self.cfg)
        per_group = clamp_group_setting(max_per_group, self.cfg["DEFAULT_MAX_PER_GROUP"], self.cfg)
        groups = [
            Group(id=f"G{i + 1}", name=self.cfg["GROUP_NAME"].format(n=i + 1), order=i)
            for i in range(count)
        ]
        session = Session(id=sid, name=name, group_count=count, max_per_group=per_group,
                          source=trim(source), auto_sync=False, groups=groups)
        d.mkdir(parents=True, exist_ok=True)
        self.save_session(session)
        self._write_roster(sid, [])
        return session

    def load_session(self, session_id: str) -> Session:
        d = self._require(session_id)
        return session_from_dict(json.loads((d / SESSION_FILE).read_text(encoding="utf-8")))

    def save_session(self, session: Session) -> None:
        d = self.session_dir(session.id)
        d.mkdir(parents=True, exist_ok=True)
        _write_atomic(d / SESSION_FILE, json.dumps(session_to_dict(session), indent=2) + "\n")

    def list_sessions(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if (p / SESSION_FILE).exists())

    # ---- participants ----
    def load_participants(self, session_id: str) -> List[Participant]:
        d = self._require(session_id)
        path = d / ROSTER_FILE
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            return [participant_from_row(r, self.cfg) for r in csv.DictReader(fh) if trim(r.get("Id"))]

    def _write_roster(self, session_id: str, participants: Iterable[Participant]) -> None:
        buf = io.StringIO()
        w = csv.DictWriter(buf, fieldnames=ROSTER_FIELDS)
        w.writeheader()
        for p in by_position(participants):
            w.writerow(participant_to_row(p))
        _write_atomic(self.session_dir(session_id) / ROSTER_FILE, buf.getvalue())

    def apply(
        self,
        session_id: str,
        created: Iterable[Participant] = (),
        updated: Iterable[Participant] = (),
    ) -> List[Participant]:
        """Insert ``created`` and replace ``updated`` (matched by id) in one atomic write.

        Nothing is written when an updated id is unknown, a created id already
        exists, or the resulting roster breaks an invariant.
        """
        session = self.load_session(session_id)
        current = {p.id: p for p in self.load_participants(session_id)}
        for p in updated:
            if p.id not in current:
                raise NotFoundError(f"Participant '{p.id}' not found in session '{session_id}'")
            current[p.id] = p
        for p in created:
            if p.id in current:
                raise RosterError(f"Participant id '{p.id}' already exists in session '{session_id}'")
            current[p.id] = p
        roster = list(current.values())
        check_invariants(session, roster)
        self._write_roster(session_id, roster)
        return by_position(roster)

    # ---- serialization ----
    @contextmanager
    def locked(self, session_id: str, timeout: float | None = None) -> Iterator[Session]:
        """Hold the session lock for one pass; yields the freshly loaded session."""
        d = self._require(session_id)
        timeout = float(self.cfg["LOCK_TIMEOUT_SECONDS"] if timeout is None else timeout)
        poll = float(self.cfg["LOCK_POLL_SECONDS"])
        tlock = _thread_lock(str(d.resolve()))
        if not tlock.acquire(timeout=timeout):
            raise SessionBusyError(f"Session '{session_id}' is busy")
        lock_path = d / LOCK_FILE
        fd = None
        try:
            deadline = time.monotonic() + timeout
            while fd is None:
                try:
                    fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                except FileExistsError:
                    if not _lock_holder_alive(lock_path):
                        print(f"[warn] removing stale lock {lock_path}", file=sys.stderr)
                        try:
                            lock_path.unlink()
                        except FileNotFoundError:
                            pass
                        continue
                    if time.monotonic() >= deadline:
                        raise SessionBusyError(
                            f"Session '{session_id}' is busy (lock file {lock_path})"
                        ) from None
                    time.sleep(poll)
            os.write(fd, str(os.getpid()).encode("ascii"))
            yield self.load_session(session_id)
        finally:
            if fd is not None:
                os.close(fd)
                try:
                    lock_path.unlink()
                except FileNotFoundError:
                    pass
            tlock.release()

# -------------------- CLI --------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Create and inspect roster sessions")
    ap.add_argument("--store", default="sessions", type=Path, help="Roster store root directory")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    sub = ap.add_subparsers(dest="action", required=True)
    p = sub.add_parser("create", help="Create a session and its groups")
    p.add_argument("name")
    p.add_argument("--id", dest="session_id", help="Session id (defaults to a slug of the name)")
    p.add_argument("--source", default="", help="Sheet URL, sheet id, or local CSV path")
    p.add_argument("--groups", type=int, help="Number of groups (clamped to LIMITS)")
    p.add_argument("--max-per-group", type=int, help="Seats per group (clamped to LIMITS)")
    sub.add_parser("list", help="List session ids")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    store = RosterStore(args.store, load_config(args.config))
    if args.action == "list":
        for sid in store.list_sessions():
            s = store.load_session(sid)
            print(f"{s.id}\t{s.name}\tgroups={s.group_count}x{s.max_per_group}\tauto_sync={'on' if s.auto_sync else 'off'}")
        return 0
    try:
        s = store.create_session(args.name, session_id=args.session_id, source=args.source,
                                 group_count=args.groups, max_per_group=args.max_per_group)
    except RosterError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    print(f"Created session '{s.id}' with {s.group_count} group(s) of {s.max_per_group} (cap {s.session_cap}).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
