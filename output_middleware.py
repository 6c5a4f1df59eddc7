import csv
import json
import os
import sys
from typing import List

from colorama import Fore, Style
from tabulate import tabulate

TABLE_HEADERS = ["domain", "addrs", "latency", "geo", "err"]
JSON_FIELDS = ["domain", "addresses", "latency_ms", "geo", "error"]


def warn(msg: str, color: bool = False):
    """Print a warning; colorized if color (or HARANALYZER_COLOR=1) and stderr is a TTY."""
    use_color = (color or os.environ.get("HARANALYZER_COLOR") == "1") and sys.stderr.isatty()
    if use_color:
        sys.stderr.write(Fore.YELLOW + "[WARNING]" + Style.RESET_ALL + " " + msg + "\n")
    else:
        sys.stderr.write("[WARNING] " + msg + "\n")
    sys.stderr.flush()


def _paint(row: dict) -> dict:
    row = dict(row)
    if row["err"]:
        row["err"] = Fore.RED + row["err"] + Style.RESET_ALL
    else:
        row["domain"] = Fore.GREEN + row["domain"] + Style.RESET_ALL
    return row


def render_table(records, color: bool = False) -> str:
    rows = [r.to_row() for r in records]
    if color:
        rows = [_paint(r) for r in rows]
    body = [[r[h] for h in TABLE_HEADERS] for r in rows]
    return tabulate(body, headers=TABLE_HEADERS, tablefmt="psql", disable_numparse=True)


def write_json(data, path: str):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def write_csv(rows: List[dict], path: str, fieldnames: List[str]):
    """
    Write CSV with stable field order. Missing keys become empty strings.
    """
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        w.writeheader()
        for r in rows:
            row = {k: ("" if r.get(k) is None else r.get(k)) for k in fieldnames}
            w.writerow(row)


def write_reports(records, prefix: str):
    """<prefix>.json with full records, <prefix>.csv with the table columns."""
    write_json([r.to_dict() for r in records], f"{prefix}.json")
    flat = []
    for r in records:
        row = r.to_row()
        row["addrs"] = ";".join(r.addresses)
        row["geo"] = ";".join(r.geo.splitlines())
        flat.append(row)
    write_csv(flat, f"{prefix}.csv", TABLE_HEADERS)
