"""Unit tests for server configuration generation."""

import base64
import json

import pytest

from mobiadd_installer.config import InstallerSettings
from mobiadd_installer.errors import AccountError, ConfigError, MigrationError
from mobiadd_installer.provision import (
    AdminAccount,
    ConfigGenerator,
    ConfigStatus,
    build_config,
    generate_secrets,
)
from mobiadd_installer.provision.configuration import parse_port

CONFIG_KEYS = [
    "mysql",
    "dialect",
    "port",
    "interface",
    "tmp_path",
    "cookie_hash",
    "cookie_encryption",
    "access_key_encryption",
    "email_alert",
    "ldap_enable",
    "max_parallel_tasks",
]


@pytest.mark.cli_unit
class TestSecrets:
    """Tests for secret generation."""

    def test_secrets_are_32_random_bytes(self):
        keys = generate_secrets()
        for value in (keys.cookie_hash, keys.cookie_encryption, keys.access_key_encryption):
            assert len(base64.b64decode(value)) == 32

    def test_secrets_are_distinct(self):
        keys = generate_secrets()
        values = {keys.cookie_hash, keys.cookie_encryption, keys.access_key_encryption}
        assert len(values) == 3

    def test_fresh_secrets_each_call(self):
        assert generate_secrets() != generate_secrets()


@pytest.mark.cli_unit
class TestBuildConfig:
    """Tests for the config document."""

    def test_mysql_key_order(self, install_paths, settings):
        config = build_config(settings, install_paths, generate_secrets())

        assert list(config) == CONFIG_KEYS
        assert config["port"] == ":4000"
        assert config["interface"] == ""
        assert config["max_parallel_tasks"] == 10
        assert config["mysql"] == {
            "host": "127.0.0.1:3306",
            "user": "root",
            "pass": "",
            "name": "mobiadd",
        }

    def test_sqlite_adds_database_path(self, install_paths):
        settings = InstallerSettings(port=3000, dialect="sqlite")

        config = build_config(settings, install_paths, generate_secrets())

        assert list(config)[:3] == ["mysql", "dialect", "sqlite"]
        assert config["sqlite"] == {"host": str(install_paths.sqlite_file)}
        assert config["port"] == ":3000"


@pytest.mark.cli_unit
class TestEnsureConfig:
    """Tests for ConfigGenerator.ensure_config."""

    def make_generator(self, profile, install_paths, settings):
        return ConfigGenerator(profile, install_paths, settings, sleep=lambda s: None)

    def test_creates_config_and_bootstraps(self, linux_profile, install_paths, settings, fake_host):
        generator = self.make_generator(linux_profile, install_paths, settings)

        status = generator.ensure_config()

        assert status == ConfigStatus.CREATED
        config = json.loads(install_paths.config_file.read_text())
        assert list(config) == CONFIG_KEYS
        assert fake_host.migrations == 1
        assert "admin" in fake_host.admins
        assert install_paths.config_file.stat().st_mode & 0o777 == 0o640

    def test_existing_config_is_untouched(self, linux_profile, install_paths, settings, fake_host):
        install_paths.config_dir.mkdir(parents=True)
        install_paths.config_file.write_text('{"cookie_hash": "keep"}')
        before = install_paths.config_file.read_bytes()

        status = self.make_generator(linux_profile, install_paths, settings).ensure_config()

        assert status == ConfigStatus.ALREADY_EXISTED
        assert install_paths.config_file.read_bytes() == before
        assert fake_host.count("mobiadd") == 0
        assert fake_host.count("mysql") == 0
        assert fake_host.calls == []
        assert not install_paths.log_dir.exists()

    def test_existing_config_port_and_dialect_adopted(
        self, linux_profile, install_paths, settings, fake_host
    ):
        install_paths.config_dir.mkdir(parents=True)
        install_paths.config_file.write_text('{"dialect": "sqlite", "port": ":5000"}')
        generator = self.make_generator(linux_profile, install_paths, settings)

        generator.ensure_config()

        assert generator.settings.port == 5000
        assert generator.settings.dialect == "sqlite"
        messages = [w.message for w in generator.warnings]
        assert any("Ignoring port 4000" in m for m in messages)
        assert any("Ignoring dialect mysql" in m for m in messages)
        assert all(not w.fatal for w in generator.warnings)

    def test_matching_existing_config_adds_no_warning(
        self, linux_profile, install_paths, settings, fake_host
    ):
        install_paths.config_dir.mkdir(parents=True)
        install_paths.config_file.write_text('{"dialect": "mysql", "port": ":4000"}')
        generator = self.make_generator(linux_profile, install_paths, settings)

        generator.ensure_config()

        assert generator.settings == settings
        assert generator.warnings == []

    def test_unreadable_existing_config_keeps_settings(
        self, linux_profile, install_paths, settings, fake_host
    ):
        install_paths.config_dir.mkdir(parents=True)
        install_paths.config_file.write_text("{not json")
        generator = self.make_generator(linux_profile, install_paths, settings)

        status = generator.ensure_config()

        assert status == ConfigStatus.ALREADY_EXISTED
        assert generator.settings.port == 4000
        assert "Cannot read" in generator.warnings[0].message
        assert install_paths.config_file.read_text() == "{not json"

    def test_creates_service_user_once(self, linux_profile, install_paths, settings, fake_host):
        self.make_generator(linux_profile, install_paths, settings).prepare_directories()
        self.make_generator(linux_profile, install_paths, settings).prepare_directories()

        assert fake_host.count("useradd") == 1
        useradd = fake_host.find("useradd")[0]
        assert "--system" in useradd
        assert useradd[-1] == "mobiadd"

    def test_directories_owned_by_service_user(
        self, linux_profile, install_paths, settings, fake_host
    ):
        self.make_generator(linux_profile, install_paths, settings).prepare_directories()

        chown = fake_host.find("chown", "-R", "mobiadd:mobiadd")[0]
        assert str(install_paths.config_dir) in chown
        assert install_paths.config_dir.stat().st_mode & 0o777 == 0o750

    def test_mysql_database_created(self, linux_profile, install_paths, settings, fake_host):
        self.make_generator(linux_profile, install_paths, settings).ensure_config()

        statement = fake_host.find("mysql", "-u", "root", "-e")[0][-1]
        assert statement == "CREATE DATABASE IF NOT EXISTS mobiadd;"

    def test_sqlite_skips_mysql(self, linux_profile, install_paths, fake_host):
        settings = InstallerSettings(dialect="sqlite")

        self.make_generator(linux_profile, install_paths, settings).ensure_config()

        assert fake_host.count("mysql") == 0
        assert fake_host.count("systemctl", "start") == 0

    def test_macos_has_no_service_user(self, macos_profile, install_paths, settings, fake_host):
        generator = self.make_generator(macos_profile, install_paths, settings)

        generator.ensure_config()

        assert generator.service_user is None
        assert fake_host.count("useradd") == 0
        assert install_paths.config_file.stat().st_mode & 0o777 == 0o644

    def test_migration_failure_is_fatal(self, linux_profile, install_paths, settings, fake_host):
        fake_host.migrate_returncode = 1

        with pytest.raises(MigrationError) as exc_info:
            self.make_generator(linux_profile, install_paths, settings).ensure_config()

        assert exc_info.value.fatal
        assert "inconsistent" in exc_info.value.message
        assert "user" not in [argv[1] for argv in fake_host.find("mobiadd")]

    def test_admin_failure_is_warning(self, linux_profile, install_paths, settings, fake_host):
        fake_host.admins.add("admin")
        generator = self.make_generator(linux_profile, install_paths, settings)

        status = generator.ensure_config()

        assert status == ConfigStatus.CREATED
        assert isinstance(generator.warnings[0], AccountError)
        assert not generator.warnings[0].fatal

    def test_admin_arguments(self, linux_profile, install_paths, settings, fake_host):
        self.make_generator(linux_profile, install_paths, settings).ensure_config()

        add = fake_host.find("mobiadd", "user", "add")[0]
        admin = AdminAccount()
        assert "--admin" in add
        assert add[add.index("--login") + 1] == admin.login
        assert add[add.index("--email") + 1] == "admin@localhost"
        assert add[add.index("--password") + 1] == "Mobiadd"
        assert add[add.index("--config") + 1] == str(install_paths.config_file)

    def test_write_config_refuses_existing_file(self, linux_profile, install_paths, settings):
        install_paths.config_dir.mkdir(parents=True)
        install_paths.config_file.write_text("{}")
        generator = self.make_generator(linux_profile, install_paths, settings)

        with pytest.raises(ConfigError):
            generator.write_config({"port": ":4000"})

        assert install_paths.config_file.read_text() == "{}"

    def test_mysql_start_failure_is_warning(
        self, linux_profile, install_paths, settings, fake_host
    ):
        fake_host._cmd_systemctl = lambda argv, cwd: fake_host._result(argv, 5)

        generator = self.make_generator(linux_profile, install_paths, settings)
        generator.ensure_config()

        assert any("MySQL" in w.message for w in generator.warnings)


@pytest.mark.cli_unit
class TestParsePort:
    """Tests for reading the port back from a config value."""

    @pytest.mark.parametrize(
        "value,expected",
        [(":4000", 4000), ("0.0.0.0:3000", 3000), ("8080", 8080), (5000, 5000)],
    )
    def test_valid(self, value, expected):
        assert parse_port(value) == expected

    @pytest.mark.parametrize("value", ["", ":http", None, True, ":70000", 0])
    def test_invalid(self, value):
        assert parse_port(value) is None
