"""Tests for the lexicon-sync command-line interface."""

import json
import sqlite3

import pytest

from lexicon_sync.cli import create_parser, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "LEXICON_SYNC_DB", "LEXICON_SYNC_ROOT",
        "LEXICON_SYNC_LOG_VALIDATION_WARNINGS", "LEXICON_SYNC_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


def _count(db_path, table):
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


class TestParser:
    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            create_parser().parse_args(["--version"])
        assert excinfo.value.code == 0
        assert "lexicon-sync" in capsys.readouterr().out


class TestSeed:
    """Tests for the seed command."""

    def test_seed(self, data_root, capsys):
        db = data_root / "out.db"
        assert main(["seed", "--root", str(data_root), "--db", str(db)]) == 0
        out = capsys.readouterr().out
        assert "Aggregated words: 6" in out
        assert _count(db, "lexemes") == 6
        assert _count(db, "task_specs") == 10

    def test_default_db_under_root(self, data_root):
        assert main(["seed", "--root", str(data_root)]) == 0
        assert (data_root / "data" / "lexicon.db").exists()

    def test_seed_with_packs(self, data_root, capsys):
        db = data_root / "out.db"
        assert main(["seed", "--root", str(data_root), "--db", str(db), "--packs"]) == 0
        assert "Pack written" in capsys.readouterr().out
        assert (data_root / "data" / "packs" / "nouns-foundation.v1.json").exists()
        assert _count(db, "content_packs") == 3

    def test_config_file(self, data_root, capsys):
        config = data_root / "lexicon-sync.yaml"
        config.write_text("db: custom.db\nloaders: [pos_jsonl]\n", encoding="utf-8")
        assert main(["seed", "--root", str(data_root), "--config", str(config)]) == 0
        assert "Aggregated words: 5" in capsys.readouterr().out
        assert (data_root / "custom.db").exists()

    def test_bad_config(self, data_root, capsys):
        config = data_root / "lexicon-sync.yaml"
        config.write_text("batch_size: 0\n", encoding="utf-8")
        assert main(["seed", "--root", str(data_root), "--config", str(config)]) == 1
        assert "[CONFIG ERROR]" in capsys.readouterr().out

    def test_missing_config(self, data_root, capsys):
        missing = data_root / "missing.yaml"
        assert main(["seed", "--root", str(data_root), "--config", str(missing)]) == 1
        assert "File not found" in capsys.readouterr().out

    def test_malformed_source(self, tmp_path, capsys):
        path = tmp_path / "data" / "pos" / "verbs.jsonl"
        path.parent.mkdir(parents=True)
        path.write_text("{broken\n", encoding="utf-8")
        assert main(["seed", "--root", str(tmp_path), "--db", str(tmp_path / "x.db")]) == 1
        assert "verbs.jsonl:1" in capsys.readouterr().out


    def test_invalid_task_payload_does_not_abort(self, data_root, capsys):
        manual = data_root / "data" / "manual_words.csv"
        manual.write_text(
            manual.read_text(encoding="utf-8") + "Hund,N,A1,dog,m,Hunde,manual_words.csv\n",
            encoding="utf-8",
        )
        db = data_root / "out.db"
        assert main(["seed", "--root", str(data_root), "--db", str(db), "--packs"]) == 0
        assert "Skipped words:    1" in capsys.readouterr().out
        assert _count(db, "content_packs") == 3

    def test_unexpected_error(self, data_root, capsys, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise OSError("disk on fire")

        monkeypatch.setattr("lexicon_sync.cli.collect_words", broken)
        assert main(["validate", "--root", str(data_root)]) == 1
        assert "[ERROR] disk on fire" in capsys.readouterr().out
        assert "Unexpected failure in validate" in caplog.text


class TestSync:
    """Tests for the sync command."""

    def test_full_then_delta(self, data_root, capsys):
        db = data_root / "out.db"
        main(["seed", "--root", str(data_root), "--db", str(db)])
        capsys.readouterr()

        assert main(["sync", "--root", str(data_root), "--db", str(db)]) == 0
        assert "Lexemes processed: 5" in capsys.readouterr().out

        assert main(["sync", "--root", str(data_root), "--db", str(db)]) == 0
        assert "No changes since the last sync." in capsys.readouterr().out

    def test_reset_marker(self, data_root, capsys):
        db = data_root / "out.db"
        main(["seed", "--root", str(data_root), "--db", str(db)])
        main(["sync", "--root", str(data_root), "--db", str(db)])
        assert main(["sync", "--root", str(data_root), "--db", str(db), "--reset-marker"]) == 0
        assert _count(db, "sync_state") == 0


class TestValidate:
    """Tests for the validate command."""

    def test_clean_data(self, data_root, capsys):
        assert main(["validate", "--root", str(data_root)]) == 0
        out = capsys.readouterr().out
        assert "Checked 6 word(s): 0 error(s)" in out
        assert "[WARN]  sehen (V): praesens_ich" in out

    def test_errors_exit_nonzero(self, tmp_path, capsys):
        path = tmp_path / "data" / "pos" / "nouns.jsonl"
        path.parent.mkdir(parents=True)
        path.write_text('{"lemma": "Milch", "noun": {}}\n', encoding="utf-8")
        assert main(["validate", "--root", str(tmp_path)]) == 1
        assert "[ERROR] Milch (N): gender" in capsys.readouterr().out


class TestAttribution:
    """Tests for the attribution command."""

    def test_json(self, data_root, capsys):
        assert main(["attribution", "--root", str(data_root), "--json"]) == 0
        entries = {e["id"]: e for e in json.loads(capsys.readouterr().out)}
        assert entries["manual_words.csv"]["count"] == 2
        assert entries["pos_jsonl:verbs"]["pos"] == ["V"]

    def test_table(self, data_root, capsys):
        assert main(["attribution", "--root", str(data_root)]) == 0
        assert "POS seed (verbs.jsonl)" in capsys.readouterr().out

    def test_no_sources(self, tmp_path, capsys):
        assert main(["attribution", "--root", str(tmp_path)]) == 0
        assert "No sources found." in capsys.readouterr().out
