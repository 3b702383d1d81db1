import pytest

from transform_copilot.core.adapters.registry import create_adapter
from transform_copilot.core.errors import AdapterError, ProfileError
from transform_copilot.core.profiles import load_profile


PROFILES = """
shop:
  target: "{{ env_var('SHOP_TARGET', 'dev') }}"
  outputs:
    dev:
      type: sqlite
      path: /tmp/shop.db
      schema: dev
      threads: "3"
    prod:
      type: snowflake
      account: "{{ env_var('SHOP_ACCOUNT') }}"
      password: "{{ env_var('SHOP_PASSWORD', 'secret') }}"
      schema: analytics
"""


@pytest.fixture()
def profiles_dir(tmp_path):
    (tmp_path / "profiles.yml").write_text(PROFILES, encoding="utf-8")
    return tmp_path


def test_default_target_and_threads_coercion(profiles_dir, monkeypatch):
    monkeypatch.delenv("SHOP_TARGET", raising=False)
    cfg = load_profile(profiles_dir, "shop")

    assert cfg.name == "dev"
    assert cfg.type == "sqlite"
    assert cfg.schema_name == "dev"
    assert cfg.threads == 3
    assert cfg.credentials()["path"] == "/tmp/shop.db"


def test_env_var_renders_secrets_and_target(profiles_dir, monkeypatch):
    monkeypatch.setenv("SHOP_TARGET", "prod")
    monkeypatch.setenv("SHOP_ACCOUNT", "acme-eu")
    cfg = load_profile(profiles_dir, "shop")

    assert cfg.name == "prod"
    assert cfg.credentials()["account"] == "acme-eu"
    assert cfg.credentials()["password"] == "secret"

    described = cfg.describe()
    assert "password" not in described
    assert described["account"] == "acme-eu"


def test_missing_env_var_without_default(profiles_dir, monkeypatch):
    monkeypatch.delenv("SHOP_ACCOUNT", raising=False)
    with pytest.raises(ProfileError) as ei:
        load_profile(profiles_dir, "shop", "prod")
    assert "SHOP_ACCOUNT" in str(ei.value)


def test_unknown_profile_and_target(profiles_dir):
    with pytest.raises(ProfileError):
        load_profile(profiles_dir, "nope")
    with pytest.raises(ProfileError) as ei:
        load_profile(profiles_dir, "shop", "staging")
    assert "available: dev, prod" in str(ei.value)


def test_missing_profiles_file(tmp_path):
    with pytest.raises(ProfileError):
        load_profile(tmp_path, "shop")


def test_unsupported_warehouse_type(tmp_path):
    (tmp_path / "profiles.yml").write_text(
        "shop:\n  target: dev\n  outputs:\n    dev: {type: oracle, schema: x}\n",
        encoding="utf-8",
    )
    target = load_profile(tmp_path, "shop")
    assert target.type == "oracle"

    for dry_run in (False, True):
        with pytest.raises(AdapterError) as ei:
            create_adapter(target, dry_run=dry_run)
        assert "Unknown warehouse type 'oracle'" in str(ei.value)
