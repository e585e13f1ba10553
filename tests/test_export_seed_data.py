import csv

import db
from scripts import export_seed_data


def test_exports_from_configured_database(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "configured.db")
    monkeypatch.setattr(db, "SEED_DIR", tmp_path / "seed")
    db.init_db()
    db.create_container(
        {
            "number": "CMAU5550001",
            "transitaire": "TAF",
            "max_pallets": 20,
            "max_weight_kg": 24000,
            "max_volume_m3": 67,
        }
    )

    export_seed_data.main()

    with (tmp_path / "seed" / "containers.csv").open(encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["number"] for row in rows] == ["CMAU5550001"]
    assert "containers: 1 rows" in capsys.readouterr().out
