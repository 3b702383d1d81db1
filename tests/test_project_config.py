import pytest

from transform_copilot.core.errors import ProjectError
from transform_copilot.core.project.loader import load_project, merge_configs, resolve_folder_config


def test_load_project_reads_paths_and_aliases(sample_project):
    project = load_project(sample_project.project_dir)

    assert project.name == "jaffle_shop"
    assert project.config.profile == "jaffle_shop"
    assert project.paths("model") == [sample_project.project_dir.resolve() / "models"]
    assert project.target_dir == sample_project.project_dir.resolve() / "target"
    assert project.config.vars["start_date"] == "2024-01-01"


def test_target_path_override(sample_project):
    project = load_project(sample_project.project_dir, target_path="build_out")
    assert project.target_dir.name == "build_out"


def test_missing_project_file_is_a_project_error(tmp_path):
    with pytest.raises(ProjectError) as ei:
        load_project(tmp_path)
    assert "transform_project.yml not found" in str(ei.value)


def test_invalid_project_yaml(tmp_path):
    (tmp_path / "transform_project.yml").write_text("name: [unclosed\n", encoding="utf-8")
    with pytest.raises(ProjectError):
        load_project(tmp_path)


def test_project_requires_name(tmp_path):
    (tmp_path / "transform_project.yml").write_text("profile: x\n", encoding="utf-8")
    with pytest.raises(ProjectError) as ei:
        load_project(tmp_path)
    assert "Invalid project configuration" in str(ei.value)


def test_folder_config_deeper_levels_win():
    tree = {
        "shop": {
            "+materialized": "view",
            "+tags": ["all"],
            "marts": {
                "+materialized": "table",
                "+tags": "marts",
                "finance": {"+schema": "finance"},
            },
        }
    }

    cfg = resolve_folder_config(tree, "shop", ["marts", "finance", "revenue"])
    assert cfg["materialized"] == "table"
    assert cfg["schema"] == "finance"
    assert cfg["tags"] == ["all", "marts"]

    top = resolve_folder_config(tree, "shop", ["staging", "stg_x"])
    assert top == {"materialized": "view", "tags": ["all"]}


def test_folder_config_for_other_project_is_empty():
    assert resolve_folder_config({"other": {"+materialized": "table"}}, "shop", ["a"]) == {}


def test_merge_configs_unions_tags_and_accumulates_hooks():
    merged = merge_configs(
        {"tags": ["a"], "pre-hook": "select 1", "materialized": "view"},
        {"+tags": ["a", "b"], "pre_hook": ["select 2"], "materialized": "table"},
    )
    assert merged["tags"] == ["a", "b"]
    assert merged["pre_hook"] == ["select 1", "select 2"]
    assert merged["materialized"] == "table"
