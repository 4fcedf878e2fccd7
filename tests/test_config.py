import config


def test_coerce_percentage():
    assert config._coerce_percentage("85", 90.0) == 85.0
    assert config._coerce_percentage("0", 90.0) == 0.0
    assert config._coerce_percentage("150", 90.0) == 90.0
    assert config._coerce_percentage("high", 90.0) == 90.0
    assert config._coerce_percentage(None, 90.0) == 90.0


def test_resolve_match_strategy():
    assert config._resolve_match_strategy(None) == "containment"
    assert config._resolve_match_strategy(" Token-Set ") == "token_set"
    assert config._resolve_match_strategy("edit_distance") == "edit_distance"
    assert config._resolve_match_strategy("soundex") == "containment"


def test_positive_coercion_falls_back_to_defaults():
    assert config._coerce_positive_int("25", 10) == 25
    assert config._coerce_positive_int("-1", 10) == 10
    assert config._coerce_positive_float("0.75", 0.5) == 0.75
    assert config._coerce_positive_float("nope", 0.5) == 0.5


def test_validate_igdb_credentials(monkeypatch):
    monkeypatch.setattr(config, "IGDB_ENABLED", True)
    monkeypatch.setattr(config, "IGDB_ACCESS_TOKEN", "")
    monkeypatch.setattr(config, "IGDB_CLIENT_ID", "client")
    monkeypatch.setattr(config, "IGDB_CLIENT_SECRET", "")

    assert config.validate_igdb_credentials() is False

    monkeypatch.setattr(config, "IGDB_CLIENT_SECRET", "secret")
    assert config.validate_igdb_credentials() is True
