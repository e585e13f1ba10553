import csv
import sqlite3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db

TABLES = {
    "products": {
        "columns": [
            "id",
            "name",
            "dangerous",
            "imdg_class",
            "units_per_package",
            "packages_per_carton",
            "cartons_per_palette",
            "created_at",
        ],
        "order_by": "id ASC",
    },
    "containers": {
        "columns": [
            "id",
            "number",
            "type",
            "transitaire",
            "max_pallets",
            "max_weight_kg",
            "max_volume_m3",
            "dangerous_goods",
            "status",
            "etd",
            "eta",
            "created_at",
        ],
        "order_by": "id ASC",
    },
    "groupages": {
        "columns": [
            "id",
            "reference",
            "container_id",
            "transitaire",
            "max_space_pallets",
            "available_space_pallets",
            "max_weight_kg",
            "available_weight_kg",
            "max_volume_m3",
            "available_volume_m3",
            "allows_dangerous_goods",
            "status",
            "created_at",
        ],
        "order_by": "id ASC",
    },
}


def _export_table(cursor, seed_dir, table_name, columns, order_by):
    query = f"SELECT {', '.join(columns)} FROM {table_name}"
    if order_by:
        query += f" ORDER BY {order_by}"
    rows = cursor.execute(query).fetchall()

    if not rows:
        return 0

    path = seed_dir / f"{table_name}.csv"
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([row[idx] for idx in range(len(columns))])
    return len(rows)


def main():
    db_path = Path(db.DB_PATH)
    seed_dir = Path(db.SEED_DIR)
    if not db_path.exists():
        raise SystemExit(f"Database not found at {db_path}")
    seed_dir.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as connection:
        cursor = connection.cursor()
        for table, meta in TABLES.items():
            count = _export_table(
                cursor, seed_dir, table, meta["columns"], meta.get("order_by")
            )
            print(f"{table}: {count} rows")


if __name__ == "__main__":
    main()
