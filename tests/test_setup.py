"""Test that the project setup is working correctly."""

import cardano_portfolio_tracker


def test_version() -> None:
    """Test that version is defined."""
    assert cardano_portfolio_tracker.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from cardano_portfolio_tracker import alerter
    from cardano_portfolio_tracker import portfolio
    from cardano_portfolio_tracker import pricing
    from cardano_portfolio_tracker import providers
    from cardano_portfolio_tracker import storage

    # Just verify imports work
    assert alerter is not None
    assert portfolio is not None
    assert pricing is not None
    assert providers is not None
    assert storage is not None
