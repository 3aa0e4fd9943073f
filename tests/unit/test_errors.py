"""Unit tests for the error taxonomy."""

import pytest

from mobiadd_installer.errors import (
    AccountError,
    BuildError,
    ConfigError,
    DependencyError,
    DownloadError,
    MigrationError,
    PlatformError,
    ProvisionError,
    ServiceError,
    VerificationWarning,
)


@pytest.mark.cli_unit
class TestProvisionError:
    """Tests for ProvisionError and its subclasses."""

    def test_str_is_message(self):
        assert str(ProvisionError("boom")) == "boom"

    @pytest.mark.parametrize(
        "error_cls,step",
        [
            (PlatformError, "platform"),
            (DependencyError, "dependencies"),
            (DownloadError, "toolchain"),
            (BuildError, "build"),
            (ConfigError, "configure"),
            (MigrationError, "configure"),
            (ServiceError, "service"),
        ],
    )
    def test_fatal_errors(self, error_cls, step):
        error = error_cls("failed")
        assert error.fatal
        assert error.step == step
        assert error.hint

    @pytest.mark.parametrize("error_cls", [AccountError, VerificationWarning])
    def test_non_fatal_errors(self, error_cls):
        assert not error_cls("advisory").fatal

    def test_step_override(self):
        error = ServiceError("inactive", step="verify", hint="look at the journal")
        assert error.step == "verify"
        assert error.hint == "look at the journal"

    def test_catchable_as_exception(self):
        with pytest.raises(ProvisionError):
            raise DownloadError("404")
