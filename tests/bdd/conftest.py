"""
Shared fixtures and step definitions for BDD tests.

- runner, mock_store, context: available to all scenario files in this directory
- mock_store replaces the store module inside every engine module, so scenarios
  run the real engine logic through the CLI with no database
- no_logging: autouse, prevents log file creation during tests
- 'the output contains' / 'the output does not contain' steps: shared across
  all feature files
"""

import pytest
from unittest.mock import MagicMock, patch
from click.testing import CliRunner
from pytest_bdd import then, parsers


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_store():
    store = MagicMock()
    with patch("washcrm.engine.offers.store", store), \
         patch("washcrm.engine.reminders.store", store), \
         patch("washcrm.engine.followup.store", store):
        yield store


@pytest.fixture
def context():
    """Mutable dict shared between Given/When/Then steps within a scenario."""
    return {}


@pytest.fixture(autouse=True)
def no_logging():
    with patch("washcrm.cli.main.configure_logging"):
        yield


@then(parsers.parse('the output contains "{text}"'))
def output_contains(context, text):
    assert text in context["result"].output, (
        f"Expected {text!r} in output:\n{context['result'].output}"
    )


@then(parsers.parse('the output does not contain "{text}"'))
def output_does_not_contain(context, text):
    assert text not in context["result"].output, (
        f"Did not expect {text!r} in output:\n{context['result'].output}"
    )
