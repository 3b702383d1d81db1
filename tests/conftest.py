import sqlite3
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from transform_copilot.api.main import app
from transform_copilot.core.observability.metrics import reset_metrics
from transform_copilot.core.session import open_session


PROJECT_YML = """
name: jaffle_shop
version: "1.0"
profile: jaffle_shop

model-paths: ["models"]
seed-paths: ["seeds"]
snapshot-paths: ["snapshots"]
test-paths: ["tests"]

vars:
  start_date: "2024-01-01"

models:
  jaffle_shop:
    +materialized: view
    staging:
      +tags: ["staging"]
    marts:
      +materialized: table
      +tags: "marts"
"""

SOURCES_YML = """
version: 2

sources:
  - name: raw
    schema: raw
    loaded_at_field: _loaded_at
    freshness:
      warn_after: {count: 12, period: hour}
      error_after: {count: 24, period: hour}
    tables:
      - name: orders
        columns:
          - name: id
            tests:
              - not_null
      - name: customers
        freshness: null
"""

SCHEMA_YML = """
version: 2

models:
  - name: stg_orders
    description: One row per order placed on or after start_date.
    columns:
      - name: order_id
        description: Primary key.
        tests:
          - unique
          - not_null
      - name: status
        tests:
          - accepted_values:
              values: ["placed", "shipped", "completed", "returned"]
      - name: customer_id
        tests:
          - relationships:
              to: ref('stg_customers')
              field: customer_id
  - name: stg_customers
    description: One row per customer.
    columns:
      - name: customer_id
        tests:
          - unique
"""

STG_ORDERS = """
select
    id as order_id,
    user_id as customer_id,
    order_date,
    status,
    updated_at
from {{ source('raw', 'orders') }}
where order_date >= '{{ var("start_date") }}'
"""

STG_CUSTOMERS = """
select
    id as customer_id,
    first_name,
    last_name
from {{ source('raw', 'customers') }}
"""

ORDER_PAYMENTS = """
{{ config(materialized='ephemeral') }}

select order_id, sum(amount) as amount
from {{ ref('raw_payments') }}
group by order_id
"""

CUSTOMER_ORDERS = """
select
    c.customer_id,
    count(o.order_id) as order_count,
    min(o.order_date) as first_order
from {{ ref('stg_customers') }} as c
left join {{ ref('stg_orders') }} as o on o.customer_id = c.customer_id
group by c.customer_id
"""

FCT_ORDERS = """
{{ config(
    materialized='incremental',
    unique_key='order_id',
    incremental_strategy='delete+insert'
) }}

select o.order_id, o.customer_id, o.order_date, o.status, o.updated_at, p.amount
from {{ ref('stg_orders') }} as o
left join {{ ref('order_payments') }} as p on p.order_id = o.order_id
{% if is_incremental() %}
where o.updated_at > (select max(updated_at) from {{ this }})
{% endif %}
"""

CUSTOMERS_SNAPSHOT = """
{% snapshot customers_snapshot %}
{{ config(
    target_schema='snapshots',
    unique_key='id',
    strategy='timestamp',
    updated_at='updated_at'
) }}
select id, first_name, last_name, updated_at from {{ source('raw', 'customers') }}
{% endsnapshot %}
"""

SINGULAR_TEST = """
select order_id, amount
from {{ ref('fct_orders') }}
where amount < 0
"""

PAYMENTS_CSV = "id,order_id,amount\n1,1,10.5\n2,1,4.5\n3,2,20\n4,3,7.25\n"

PROFILES_YML = """
jaffle_shop:
  target: dev
  outputs:
    dev:
      type: sqlite
      path: "{db_path}"
      schema: dev
      threads: 2
    prod:
      type: snowflake
      account: "{{{{ env_var('SNOWFLAKE_ACCOUNT', 'acme') }}}}"
      user: transformer
      password: "{{{{ env_var('SNOWFLAKE_PASSWORD', 'hunter2') }}}}"
      database: analytics
      schema: marts
      threads: 4
"""

LOADED_AT = "2024-01-05 12:00:00"


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
    return path


def seed_warehouse(db_path: Path) -> None:
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(
            """
            create table raw__customers (id integer, first_name text, last_name text, updated_at text, _loaded_at text);
            create table raw__orders (id integer, user_id integer, order_date text, status text, updated_at text, _loaded_at text);
            """
        )
        conn.executemany(
            "insert into raw__customers values (?, ?, ?, ?, ?)",
            [
                (1, "Ada", "Lovelace", "2024-01-01 00:00:00", LOADED_AT),
                (2, "Alan", "Turing", "2024-01-01 00:00:00", LOADED_AT),
                (3, "Grace", "Hopper", "2024-01-01 00:00:00", LOADED_AT),
            ],
        )
        conn.executemany(
            "insert into raw__orders values (?, ?, ?, ?, ?, ?)",
            [
                (1, 1, "2024-01-02", "completed", "2024-01-02 10:00:00", LOADED_AT),
                (2, 1, "2024-01-03", "shipped", "2024-01-03 10:00:00", LOADED_AT),
                (3, 2, "2024-01-04", "placed", "2024-01-04 10:00:00", LOADED_AT),
                (4, 3, "2023-12-30", "completed", "2023-12-30 10:00:00", LOADED_AT),
            ],
        )
        conn.commit()
    finally:
        conn.close()


def query(db_path: Path, sql: str, params=()):
    conn = sqlite3.connect(str(db_path))
    try:
        rows = conn.execute(sql, params).fetchall()
        conn.commit()
        return rows
    finally:
        conn.close()


@dataclass
class SampleProject:
    project_dir: Path
    profiles_dir: Path
    db_path: Path

    @property
    def target_dir(self) -> Path:
        return self.project_dir / "target"

    def cli_args(self, *extra: str):
        return ["--project-dir", str(self.project_dir), "--profiles-dir", str(self.profiles_dir), *extra]

    def session(self, **kwargs):
        return open_session(self.project_dir, self.profiles_dir, **kwargs)

    def query(self, sql: str, params=()):
        return query(self.db_path, sql, params)


@pytest.fixture(autouse=True)
def _clean_named_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def sample_project(tmp_path: Path) -> SampleProject:
    project_dir = tmp_path / "jaffle_shop"
    profiles_dir = tmp_path / "profiles"
    db_path = tmp_path / "warehouse.db"

    write(project_dir / "transform_project.yml", PROJECT_YML)
    write(project_dir / "models" / "staging" / "sources.yml", SOURCES_YML)
    write(project_dir / "models" / "schema.yml", SCHEMA_YML)
    write(project_dir / "models" / "staging" / "stg_orders.sql", STG_ORDERS)
    write(project_dir / "models" / "staging" / "stg_customers.sql", STG_CUSTOMERS)
    write(project_dir / "models" / "staging" / "order_payments.sql", ORDER_PAYMENTS)
    write(project_dir / "models" / "marts" / "customer_orders.sql", CUSTOMER_ORDERS)
    write(project_dir / "models" / "marts" / "fct_orders.sql", FCT_ORDERS)
    write(project_dir / "snapshots" / "customers_snapshot.sql", CUSTOMERS_SNAPSHOT)
    write(project_dir / "tests" / "assert_no_negative_amounts.sql", SINGULAR_TEST)
    (project_dir / "seeds").mkdir(parents=True, exist_ok=True)
    (project_dir / "seeds" / "raw_payments.csv").write_text(PAYMENTS_CSV, encoding="utf-8")

    write(profiles_dir / "profiles.yml", PROFILES_YML.format(db_path=db_path.as_posix()))
    seed_warehouse(db_path)
    return SampleProject(project_dir=project_dir, profiles_dir=profiles_dir, db_path=db_path)


@pytest.fixture()
def session(sample_project):
    s = sample_project.session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client():
    return TestClient(app)
