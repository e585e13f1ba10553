import argparse
import csv
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services import imdg_compatibility


def _collect_rows():
    rows = []
    for listed_by, listed_class in imdg_compatibility.find_asymmetric_pairs():
        rows.append(
            {
                "listed_by": listed_by,
                "listed_class": listed_class,
                "missing_on": listed_class,
                "effective": "incompatible",
            }
        )
    return rows


def _print_preview(rows):
    if not rows:
        print("Compatibility table is symmetric.")
        return
    header = f"{'Listed by':<12} {'Lists':<12} {'Missing reverse entry on':<26}"
    print(header)
    print("-" * len(header))
    for row in rows:
        print(f"{row['listed_by']:<12} {row['listed_class']:<12} {row['missing_on']:<26}")
    print(
        f"\n{len(rows)} one-sided entries. Lookups check both directions, "
        "so each pair is treated as incompatible."
    )


def _write_csv(path_text, rows):
    path = Path(path_text).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(
            handle,
            fieldnames=["listed_by", "listed_class", "missing_on", "effective"],
        )
        writer.writeheader()
        writer.writerows(rows)
    return path


def main():
    parser = argparse.ArgumentParser(
        description="List IMDG segregation entries that are not mirrored by the other class."
    )
    parser.add_argument(
        "--output",
        type=str,
        default="",
        help="Optional CSV output path for the asymmetric pairs.",
    )
    args = parser.parse_args()

    rows = _collect_rows()
    _print_preview(rows)

    if args.output:
        written_path = _write_csv(args.output, rows)
        print(f"\nWrote asymmetry report CSV: {written_path}")


if __name__ == "__main__":
    main()
