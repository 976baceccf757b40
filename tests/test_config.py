"""Tests for settings loading, env overrides and hot reload."""

from core.config import ConfigSection, ShopConfig


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestLoading:

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SHOP_QUOTE_VAT_RATE", raising=False)
        config = ShopConfig(tmp_path / "missing.toml")
        assert config.quote.vat_rate == 0.20
        assert config.quote.quote_validity_days == 7
        assert config.locale.supported == ["en", "bg"]
        assert config.auth.cookie_name == "shop_session"
        assert "admin@mechanic.com" in config.auth.bootstrap_admin_emails

    def test_file_merges_over_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SHOP_SERVER_PORT", raising=False)
        path = _write(tmp_path / "s.toml", "[server]\nport = 9000\n")
        config = ShopConfig(path)
        assert config.server.port == 9000
        assert config.server.host == "0.0.0.0"

    def test_broken_file_falls_back(self, tmp_path):
        path = _write(tmp_path / "s.toml", "[server\nport = ")
        assert ShopConfig(path).storage.db_path == "data/shop.db"

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHOP_QUOTE_VAT_RATE", "0.09")
        monkeypatch.setenv("SHOP_MATCHER_FALLBACK_ENABLED", "false")
        config = ShopConfig(tmp_path / "missing.toml")
        assert config.quote.vat_rate == 0.09
        assert config.matcher.fallback_enabled is False

    def test_bad_env_value_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHOP_SERVER_PORT", "eighty")
        assert ShopConfig(tmp_path / "missing.toml").server.port == 8080

    def test_config_env_var_selects_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SHOP_LOCALE_DEFAULT", raising=False)
        path = _write(tmp_path / "alt.toml", '[locale]\ndefault = "bg"\n')
        monkeypatch.setenv("SHOP_CONFIG", str(path))
        assert ShopConfig().locale.default == "bg"


def test_reload_reports_changes(tmp_path, monkeypatch):
    monkeypatch.delenv("SHOP_QUOTE_VAT_RATE", raising=False)
    path = _write(tmp_path / "s.toml", "[quote]\nvat_rate = 0.2\n")
    config = ShopConfig(path)
    _write(path, "[quote]\nvat_rate = 0.09\n")
    assert config.reload() == {"quote.vat_rate": {"old": 0.2, "new": 0.09}}
    assert config.reload() == {}


def test_section_access():
    section = ConfigSection({"port": 1, "nested": {"key": "v"}})
    assert section.nested.key == "v"
    assert section.to_dict()["port"] == 1
