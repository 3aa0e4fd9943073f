"""Test mocks for mobiadd-installer.

Provides simulated hosts for testing:
- FakeHost: Answers subprocess.run and shutil.which for a provisioning run
"""

from .fake_host import FakeHost

__all__ = ["FakeHost"]
