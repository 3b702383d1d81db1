import pytest

from conftest import write
from transform_copilot.core.errors import CompilationError, ProjectError
from transform_copilot.core.manifest.parser import generate_schema_name, resolve_vars


def test_manifest_contains_every_resource(session):
    m = session.manifest
    p = "jaffle_shop"

    assert {n.name for n in m.of_type("model")} == {
        "stg_orders",
        "stg_customers",
        "order_payments",
        "customer_orders",
        "fct_orders",
    }
    assert f"seed.{p}.raw_payments" in m.nodes
    assert f"snapshot.{p}.customers_snapshot" in m.nodes
    assert set(m.sources) == {f"source.{p}.raw.orders", f"source.{p}.raw.customers"}
    assert {n.name for n in m.of_type("test")} == {
        "unique_stg_orders_order_id",
        "not_null_stg_orders_order_id",
        "accepted_values_stg_orders_status",
        "relationships_stg_orders_customer_id_customer_id",
        "unique_stg_customers_customer_id",
        "not_null_source_raw_orders_id",
        "assert_no_negative_amounts",
    }


def test_dependencies_from_ref_and_source(session):
    m = session.manifest
    assert m.get("model.jaffle_shop.stg_orders").depends_on == ["source.jaffle_shop.raw.orders"]
    assert m.get("model.jaffle_shop.customer_orders").depends_on == [
        "model.jaffle_shop.stg_customers",
        "model.jaffle_shop.stg_orders",
    ]
    assert m.get("model.jaffle_shop.fct_orders").depends_on == [
        "model.jaffle_shop.stg_orders",
        "model.jaffle_shop.order_payments",
    ]
    rel_test = m.get("test.jaffle_shop.relationships_stg_orders_customer_id_customer_id")
    assert rel_test.depends_on == ["model.jaffle_shop.stg_orders", "model.jaffle_shop.stg_customers"]


def test_config_precedence(session):
    m = session.manifest
    stg = m.get("model.jaffle_shop.stg_orders")
    assert stg.materialized == "view"
    assert stg.tags == ["staging"]

    marts = m.get("model.jaffle_shop.customer_orders")
    assert marts.materialized == "table"
    assert marts.tags == ["marts"]

    # In-file config() wins over the folder config.
    fct = m.get("model.jaffle_shop.fct_orders")
    assert fct.materialized == "incremental"
    assert fct.config.unique_keys() == ["order_id"]
    assert m.get("model.jaffle_shop.order_payments").is_ephemeral


def test_relations_and_snapshot_target_schema(session):
    m = session.manifest
    assert m.get("model.jaffle_shop.stg_orders").relation.to_dict() == {
        "database": None,
        "schema": "dev",
        "identifier": "stg_orders",
    }
    snap = m.get("snapshot.jaffle_shop.customers_snapshot")
    assert snap.relation.schema == "snapshots"
    assert snap.config.extra("strategy") == "timestamp"
    assert "endsnapshot" not in snap.raw_sql


def test_documentation_is_attached(session):
    stg = session.manifest.get("model.jaffle_shop.stg_orders")
    assert stg.description.startswith("One row per order")
    assert stg.columns["order_id"].description == "Primary key."


def test_tests_inherit_tags_of_attached_node(session):
    t = session.manifest.get("test.jaffle_shop.unique_stg_orders_order_id")
    assert t.tags == ["staging"]
    assert t.test_metadata.attached_node == "model.jaffle_shop.stg_orders"
    assert t.test_metadata.column_name == "order_id"


def test_custom_schema_name():
    assert generate_schema_name(None, "dev") == "dev"
    assert generate_schema_name("marts", "dev") == "dev_marts"


def test_vars_precedence():
    project_vars = {"a": 1, "b": 1, "shop": {"b": 2, "c": 2}}
    assert resolve_vars(project_vars, "shop", {"c": 3}) == {"a": 1, "b": 2, "c": 3}


def test_unknown_ref_is_a_compilation_error(sample_project):
    write(sample_project.project_dir / "models" / "bad.sql", "select * from {{ ref('nope') }}")
    with pytest.raises(CompilationError) as ei:
        sample_project.session()
    assert "ref('nope')" in str(ei.value)


def test_ref_to_disabled_node(sample_project):
    write(sample_project.project_dir / "models" / "old.sql", "{{ config(enabled=false) }}\nselect 1 as x")
    write(sample_project.project_dir / "models" / "uses_old.sql", "select * from {{ ref('old') }}")
    with pytest.raises(CompilationError) as ei:
        sample_project.session()
    assert "disabled" in str(ei.value)


def test_undeclared_source(sample_project):
    write(sample_project.project_dir / "models" / "bad.sql", "select * from {{ source('raw', 'payments') }}")
    with pytest.raises(CompilationError):
        sample_project.session()


def test_duplicate_model_names(sample_project):
    write(sample_project.project_dir / "models" / "other" / "stg_orders.sql", "select 1 as x")
    with pytest.raises(ProjectError) as ei:
        sample_project.session()
    assert "Two resources are named 'stg_orders'" in str(ei.value)


def test_snapshot_requires_strategy_fields(sample_project):
    write(
        sample_project.project_dir / "snapshots" / "broken.sql",
        "{% snapshot broken %}{{ config(unique_key='id', strategy='timestamp') }}select 1 as id{% endsnapshot %}",
    )
    with pytest.raises(ProjectError) as ei:
        sample_project.session()
    assert "requires updated_at" in str(ei.value)


def test_documented_model_without_sql_warns(sample_project):
    write(sample_project.project_dir / "models" / "extra.yml", "models:\n  - name: ghost\n")
    s = sample_project.session()
    try:
        assert any("ghost" in w for w in s.manifest.warnings)
    finally:
        s.close()
