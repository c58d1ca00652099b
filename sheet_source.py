#!/usr/bin/env python3
"""
External roster source: the first tab of a Google Sheet, read through its CSV export.

A source identifier may be a full sheet URL, a bare sheet id, or a path to a
local CSV file (handy for offline runs and tests). The first row is the header;
columns are found by loose substring matching:

  - Name          first header containing "name" but not "team"
  - Category      first header containing "gender" / "category"   (optional → "Unknown")
  - Grouping key  first header containing "team" / "unique" / "group" (optional → none)

Each data row becomes a SheetRow whose position is its 1-based sheet row
number (the first data row is 2). Rows with a blank name are skipped; a sheet
without any name column is rejected outright.
"""

from __future__ import annotations
import argparse, csv, io, re, ssl, sys, urllib.error, urllib.parse, urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import certifi

from roster_config import DEFAULT_CONFIG, load_config
from roster_models import RosterSourceError, trim

SHEET_URL_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


@dataclass(frozen=True)
class SheetRow:
    name: str
    category: str
    grouping_key: Optional[str]
    position: int

# ---------------------------- I/O ------------------------------------

def extract_sheet_id(url: str) -> Optional[str]:
    """Pull the sheet id out of a docs.google.com URL; anything else is taken as a raw id."""
    url = trim(url)
    if not url:
        return None
    m = SHEET_URL_RE.search(url)
    return m.group(1) if m else url


def export_csv_url(sheet_id: str, gid: str = "0") -> str:
    base = f"https://docs.google.com/spreadsheets/d/{sheet_id}/export"
    q = urllib.parse.urlencode({"format": "csv", "gid": gid})
    return f"{base}?{q}"


def download(url: str, dest: Path, user_agent: str = DEFAULT_CONFIG["SOURCE"]["USER_AGENT"]) -> Path:
    ctx = ssl.create_default_context(cafile=certifi.where())
    req = urllib.request.Request(url, headers={"User-Agent": user_agent})
    try:
        with urllib.request.urlopen(req, context=ctx) as resp:
            data = resp.read()
    except (urllib.error.URLError, OSError) as exc:
        raise RosterSourceError(f"Could not fetch {url}: {exc}") from exc
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)
    return dest


def read_csv_matrix(path: Path) -> List[List[str]]:
    raw = path.read_bytes()
    text = raw.decode("utf-8-sig", errors="replace")
    rdr = csv.reader(io.StringIO(text))
    return [list(row) for row in rdr]

# ------------------------ Header detection ----------------------------

def detect_columns(header: List[str], cfg: dict | None = None) -> Dict[str, Optional[int]]:
    hints = (cfg or DEFAULT_CONFIG)["HEADER_HINTS"]
    heads = [trim(h).lower() for h in header]

    def first(match) -> Optional[int]:
        for i, h in enumerate(heads):
            if h and match(h):
                return i
        return None

    name_idx = first(lambda h: any(k in h for k in hints["NAME"])
                     and not any(x in h for x in hints["NAME_EXCLUDE"]))
    category_idx = first(lambda h: any(k in h for k in hints["CATEGORY"]))
    grouping_idx = first(lambda h: any(k in h for k in hints["GROUPING"]))
    return {"name": name_idx, "category": category_idx, "grouping": grouping_idx}


def parse_roster_rows(matrix: List[List[str]], cfg: dict | None = None) -> List[SheetRow]:
    cfg = cfg or DEFAULT_CONFIG
    if len(matrix) < 2:
        return []  # header only, or empty
    header = matrix[0]
    cols = detect_columns(header, cfg)
    if cols["name"] is None:
        found = ", ".join(trim(h) for h in header)
        raise RosterSourceError(f'Could not find a "Name" column in the sheet. Found headers: {found}')

    def cell(row: List[str], idx: Optional[int]) -> str:
        if idx is None or idx >= len(row):
            return ""
        return trim(row[idx])

    unknown = cfg["UNKNOWN_CATEGORY"]
    rows: List[SheetRow] = []
    for i in range(1, len(matrix)):
        row = matrix[i]
        name = cell(row, cols["name"])
        if not name:
            continue
        rows.append(SheetRow(
            name=name,
            category=cell(row, cols["category"]) or unknown,
            grouping_key=cell(row, cols["grouping"]) or None,
            position=i + 1,  # sheet row number, header is row 1
        ))
    return rows


def fetch_rows(source: str, cfg: dict | None = None, cache_dir: Path | None = None) -> List[SheetRow]:
    """Fetch and parse a fresh snapshot of the roster sheet."""
    cfg = cfg or DEFAULT_CONFIG
    source = trim(source)
    if not source:
        raise RosterSourceError("No sheet linked to this session")
    local = Path(source)
    if local.suffix.lower() == ".csv" or local.is_file():
        if not local.is_file():
            raise RosterSourceError(f"Roster file not found: {local}")
        return parse_roster_rows(read_csv_matrix(local), cfg)
    sheet_id = extract_sheet_id(source)
    src_cfg = cfg["SOURCE"]
    cache = Path(cache_dir or src_cfg["CACHE_DIR"]) / f"{sheet_id}.csv"
    path = download(export_csv_url(sheet_id, str(src_cfg["GID"])), cache, src_cfg["USER_AGENT"])
    return parse_roster_rows(read_csv_matrix(path), cfg)

# -------------------- CLI --------------------

def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Preview the participant rows read from a roster sheet")
    ap.add_argument("source", help="Sheet URL, sheet id, or local CSV path")
    ap.add_argument("--config", type=Path, help="Optional JSON file with CONFIG overrides")
    ap.add_argument("--out", type=Path, help="Write the normalized rows as CSV here")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    try:
        rows = fetch_rows(args.source, cfg)
    except RosterSourceError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1
    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        with args.out.open("w", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            w.writerow(["Position", "Name", "Category", "GroupingKey"])
            for r in rows: w.writerow([r.position, r.name, r.category, r.grouping_key or ""])
        print(f"Wrote: {args.out.resolve()}")
    print(f"[info] {len(rows)} participant row(s) in {args.source}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
