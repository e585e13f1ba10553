import argparse
import math
import sys
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db
from services import validation
from services.validation import ValidationError


def _clean(value):
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def _number(value, default=0.0):
    text = _clean(value).replace(",", ".")
    if not text:
        return default
    try:
        return float(text)
    except ValueError:
        return default


def _whole(value):
    text = _clean(value)
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _flag(value):
    return _clean(value).lower() in {"1", "true", "yes", "oui", "y", "x"}


def _read_frame(path, sheet_name=0):
    path = Path(path)
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path)
    return pd.read_excel(path, sheet_name=sheet_name)


def import_products(path):
    df = _read_frame(path)
    imported = 0
    for _, row in df.iterrows():
        name = _clean(row.get("Name"))
        if not name:
            continue
        imdg_class = _clean(row.get("IMDG")) or None
        errors = {}
        validation.validate_imdg_class(imdg_class, "imdg_class", errors)
        if errors:
            print(f"Skipping product {name}: {errors['imdg_class']}")
            continue
        db.create_product(
            {
                "name": name,
                "dangerous": _flag(row.get("Dangerous")) or bool(imdg_class),
                "imdg_class": imdg_class,
                "units_per_package": _whole(row.get("UnitsPerPackage")),
                "packages_per_carton": _whole(row.get("PackagesPerCarton")),
                "cartons_per_palette": _whole(row.get("CartonsPerPalette")),
            }
        )
        imported += 1
    return imported


def import_containers(path):
    df = _read_frame(path)
    imported = 0
    for _, row in df.iterrows():
        container = {
            "number": _clean(row.get("Number")),
            "type": _clean(row.get("Type")) or None,
            "transitaire": _clean(row.get("Transitaire")),
            "max_pallets": _whole(row.get("MaxPallets")),
            "max_weight_kg": _number(row.get("MaxWeightKg")),
            "max_volume_m3": _number(row.get("MaxVolumeM3")),
            "dangerous_goods": _flag(row.get("DangerousGoods")),
            "status": _clean(row.get("Status")) or "planning",
        }
        try:
            validation.validate_container_payload(container)
        except ValidationError as exc:
            print(f"Skipping container {container['number'] or '?'}: {exc.errors}")
            continue
        db.create_container(container)
        imported += 1
    return imported


def import_groupages(path):
    df = _read_frame(path)
    imported = 0
    for _, row in df.iterrows():
        groupage = {
            "reference": _clean(row.get("Reference")) or None,
            "transitaire": _clean(row.get("Transitaire")),
            "max_space_pallets": _whole(row.get("MaxPallets")),
            "max_weight_kg": _number(row.get("MaxWeightKg")),
            "max_volume_m3": _number(row.get("MaxVolumeM3")),
            "allows_dangerous_goods": _flag(row.get("DangerousGoods")),
        }
        try:
            validation.validate_groupage_payload(groupage)
        except ValidationError as exc:
            print(f"Skipping groupage {groupage['reference'] or '?'}: {exc.errors}")
            continue
        db.create_groupage(groupage)
        imported += 1
    return imported


def main():
    parser = argparse.ArgumentParser(description="Import catalog and shipping units from CSV/XLSX files.")
    parser.add_argument("--products", type=str, default="", help="Products file (Name, Dangerous, IMDG, ...).")
    parser.add_argument("--containers", type=str, default="", help="Containers file.")
    parser.add_argument("--groupages", type=str, default="", help="Groupages file.")
    args = parser.parse_args()

    db.init_db()
    if args.products:
        print(f"products: {import_products(args.products)} rows")
    if args.containers:
        print(f"containers: {import_containers(args.containers)} rows")
    if args.groupages:
        print(f"groupages: {import_groupages(args.groupages)} rows")


if __name__ == "__main__":
    main()
