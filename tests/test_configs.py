from libris import configs


def test_every_setting_is_exported():
    settings = {name for name in vars(configs) if name.isupper()}
    assert settings == set(configs.__all__)


def test_testing_uses_sqlite():
    assert configs.TESTING is True
    assert configs.DB_URI.startswith("sqlite")
