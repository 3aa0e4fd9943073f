"""Allow running as `python -m mobiadd_installer`."""

from .main import main

main()
