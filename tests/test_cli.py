import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cardvalue.cli import main


def _sales_csv(path: Path) -> Path:
    lines = [
        "id,player_id,price,purchase_date_time,seller_wallet_address,buyer_wallet_address,"
        "player_overall,player_age,player_position"
    ]
    now = datetime.now(timezone.utc)
    for i in range(6):
        sold_at = (now - timedelta(days=i + 1)).isoformat()
        lines.append(f"s{i},p{i},{61 + i},{sold_at},,,77,25,CM")
    lines.append(f"bad,p9,oops,{now.isoformat()},,,77,25,CM")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture()
def db_path(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("CARDVALUE_DB_PATH", raising=False)
    return tmp_path / "market.sqlite"


def test_import_value_and_rebuild(tmp_path: Path, db_path: Path, capsys):
    csv_path = _sales_csv(tmp_path / "sales.csv")

    assert main(["--db", str(db_path), "import-sales", str(csv_path)]) == 0
    out = capsys.readouterr().out
    assert "Imported 6/7 rows" in out
    assert "row 7" in out

    assert main(["--db", str(db_path), "value", "--overall", "77", "--age", "25", "--position", "CM"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["method"] == "ema"
    assert result["sample_size"] == 6

    assert main(["--db", str(db_path), "rebuild-grid", "--min-sample-size", "5"]) == 0
    rebuild = json.loads(capsys.readouterr().out)
    assert rebuild["success"] is True
    assert rebuild["metrics"]["direct_combinations"] == 1

    assert main(["--db", str(db_path), "grid-status", "--history", "1"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["total_multipliers"] == 7500
    assert len(status["history"]) == 1


def test_value_requires_player_or_profile(db_path: Path, capsys):
    assert main(["--db", str(db_path), "value"]) == 2
    assert main(["--db", str(db_path), "value", "--player-id", "ghost"]) == 1
    assert "not found" in capsys.readouterr().out


def test_import_players_and_value_by_id(tmp_path: Path, db_path: Path, capsys):
    players = tmp_path / "players.csv"
    players.write_text(
        "id,overall,age,positions,pace,shooting,passing,dribbling,defense,physical,goalkeeping\n"
        "p1,68,19,RB,80,40,60,65,66,70,5\n",
        encoding="utf-8",
    )
    assert main(["--db", str(db_path), "import-players", str(players)]) == 0
    capsys.readouterr()

    assert main(["--db", str(db_path), "value", "--player-id", "p1"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["method"] == "position-estimate"
    assert result["estimated_value"] > 0


def test_save_profile(tmp_path: Path, db_path: Path, capsys):
    profile_path = tmp_path / "profile.json"
    assert main(["--db", str(db_path), "--save-profile", str(profile_path), "grid-status"]) == 0
    saved = json.loads(profile_path.read_text(encoding="utf-8"))
    assert saved["db_path"] == str(db_path)
    assert saved["overrides"]["max_days_old"] == 60


def test_value_rejects_unknown_position(db_path: Path, capsys):
    code = main(["--db", str(db_path), "value", "--overall", "77", "--age", "25", "--position", "XX"])
    assert code == 2
    assert "Invalid player profile" in capsys.readouterr().out


def test_import_rejects_malformed_column_mapping(tmp_path: Path, db_path: Path, capsys):
    csv_path = _sales_csv(tmp_path / "sales.csv")
    code = main(["--db", str(db_path), "import-sales", str(csv_path), "--column", "price"])
    assert code == 2
    assert "expected key=value" in capsys.readouterr().out
