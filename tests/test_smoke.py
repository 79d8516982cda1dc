"""Smoke test to verify the project is set up correctly."""

from py_sched import __doc__, __version__


def test_package_is_importable() -> None:
    """Verify that py_sched can be imported."""
    assert __doc__ is not None


def test_package_has_version() -> None:
    """The package should expose a version string."""
    assert __version__.count(".") == 2  # noqa: PLR2004
