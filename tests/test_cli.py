import json
from pathlib import Path

import pytest

from transform_copilot.cli import build_parser, command_tree, main

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def _no_env_overrides(monkeypatch):
    for name in ("TRANSFORM_TARGET", "TRANSFORM_THREADS", "TRANSFORM_TARGET_PATH", "TRANSFORM_PROFILES_DIR"):
        monkeypatch.delenv(name, raising=False)


def test_command_tree():
    tree = command_tree()
    assert tree["source"] == {"freshness"}
    assert tree["docs"] == {"generate"}
    assert tree["guide"] == {"check"}
    assert tree["build"] == set()
    assert {"debug", "parse", "ls", "compile", "run", "seed", "snapshot", "test"} <= set(tree)


def test_global_flags_work_before_and_after_the_command():
    ap = build_parser()
    before = ap.parse_args(["--project-dir", "p", "--target", "prod", "run"])
    after = ap.parse_args(["run", "--project-dir", "p", "-t", "prod", "--select", "a", "b+"])

    assert (before.project_dir, before.target) == ("p", "prod")
    assert (after.project_dir, after.target, after.select) == ("p", "prod", ["a", "b+"])
    assert before.project_dir == after.project_dir


def test_build(sample_project, capsys):
    assert main(sample_project.cli_args("build")) == 0
    out = capsys.readouterr().out
    assert "SUCCESS  model.jaffle_shop.customer_orders  [CREATE TABLE]" in out
    assert "Done. PASS=7 SUCCESS=7" in out


def test_failed_build_exits_1(sample_project):
    sample_project.query(
        "insert into raw__orders values (1, 2, '2024-01-06', 'placed', '2024-01-06 10:00:00', '2024-01-06 10:00:00')"
    )
    assert main(sample_project.cli_args("build", "--threads", "1")) == 1


def test_parse(sample_project, capsys):
    assert main(sample_project.cli_args("parse")) == 0
    out = capsys.readouterr().out
    assert "Found 5 models, 1 seeds, 1 snapshots, 2 sources, 7 tests" in out
    assert (sample_project.target_dir / "manifest.json").exists()


def test_ls(sample_project, capsys):
    args = sample_project.cli_args("ls", "--select", "+customer_orders", "--resource-type", "model", "--output", "name")
    assert main(args) == 0
    assert capsys.readouterr().out.split() == ["stg_customers", "stg_orders", "customer_orders"]


def test_ls_includes_sources_by_default(sample_project, capsys):
    assert main(sample_project.cli_args("ls", "--output", "json")) == 0
    rows = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    kinds = {r["resource_type"] for r in rows}
    assert kinds == {"model", "seed", "snapshot", "test", "source"}


def test_compile_single_node_prints_sql(sample_project, capsys):
    assert main(sample_project.cli_args("compile", "--select", "stg_customers")) == 0
    out = capsys.readouterr().out
    assert 'from "raw__customers"' in out
    assert (sample_project.target_dir / "compiled" / "jaffle_shop" / "models" / "staging" / "stg_customers.sql").exists()
    assert "Compiled 2 nodes" in out
    assert (sample_project.target_dir / "compiled" / "jaffle_shop" / "generic_tests" / "unique_stg_customers_customer_id.sql").exists()


def test_compile_for_cloud_target_in_dry_run(sample_project, capsys):
    args = ["--target", "prod", *sample_project.cli_args("compile", "--dry-run", "--select", "customer_orders")]
    assert main(args) == 0
    out = capsys.readouterr().out
    assert '"analytics"."marts"."stg_customers"' in out


def test_cloud_target_without_dry_run_is_rejected(sample_project, capsys):
    args = ["--target", "prod", *sample_project.cli_args("run")]
    assert main(args) == 2
    assert "--dry-run" in capsys.readouterr().err


def test_debug_hides_secrets(sample_project, capsys):
    assert main(["--target", "prod", *sample_project.cli_args("debug", "--dry-run")]) == 0
    out = capsys.readouterr().out
    assert "connection: OK (snowflake)" in out
    assert "hunter2" not in out


def test_vars_flag(sample_project, capsys):
    args = sample_project.cli_args("compile", "--select", "stg_orders", "--vars", "{start_date: '2024-01-03'}")
    assert main(args) == 0
    assert "order_date >= '2024-01-03'" in capsys.readouterr().out


def test_source_freshness_reports_stale_data(sample_project, capsys):
    # The fixture's load timestamps are far in the past.
    assert main(sample_project.cli_args("source", "freshness")) == 1
    out = capsys.readouterr().out
    assert "ERROR" in out and "source.jaffle_shop.raw.orders" in out
    assert (sample_project.target_dir / "sources.json").exists()


def test_docs_generate(sample_project):
    assert main(sample_project.cli_args("docs", "generate")) == 0
    assert (sample_project.target_dir / "catalog.json").exists()


def test_missing_project_exits_2(tmp_path, capsys):
    assert main(["--project-dir", str(tmp_path / "nope"), "parse"]) == 2
    assert "transform_project.yml not found" in capsys.readouterr().err


def test_group_without_subcommand_exits_2(capsys):
    assert main(["source"]) == 2
    assert main([]) == 2


def test_guide_check_on_shipped_docs(capsys):
    assert main(["guide", "check", str(REPO_ROOT / "docs"), "--project-dir", str(REPO_ROOT)]) == 0
    assert "0 errors" in capsys.readouterr().out


def test_guide_check_json_and_strict(tmp_path, capsys):
    body = "# Install\n\n" + "Run the installer and follow the prompts.\n" * 20
    (tmp_path / "a.md").write_text(body, encoding="utf-8")
    (tmp_path / "b.md").write_text(body, encoding="utf-8")

    assert main(["guide", "check", str(tmp_path), "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["warning_count"] == 1 and report["ok"] is True

    assert main(["guide", "check", str(tmp_path), "--strict"]) == 1


def test_guide_check_reports_undecodable_file(tmp_path, capsys):
    (tmp_path / "bad.md").write_bytes(b"# Guide\n\n\xff\xfe broken\n")
    assert main(["guide", "check", str(tmp_path), "--json"]) == 1
    report = json.loads(capsys.readouterr().out)
    assert [(f["code"], f["line"]) for f in report["findings"]] == [("guide.encoding", 3)]


@pytest.mark.parametrize("value", ["four", "0"])
def test_bad_threads_env_exits_cleanly(sample_project, monkeypatch, capsys, value):
    monkeypatch.setenv("TRANSFORM_THREADS", value)
    assert main(sample_project.cli_args("parse")) == 2
    err = capsys.readouterr().err
    assert "TRANSFORM_THREADS must be a positive integer" in err
    assert "Traceback" not in err
