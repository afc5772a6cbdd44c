"""Tests for the command line entry point."""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from services.donor_sync import main as cli
from services.donor_sync.fetcher import FetchError
from services.donor_sync.pipeline import PipelineReport, StageReport
from services.donor_sync.stage import DuplicateKeyError


@pytest.fixture(autouse=True)
def environment(monkeypatch, tmp_path):
    for name in ("MOLLIE_API_KEY", "API_KEY", "CSV_PATH", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MOLLIE_API_KEY", "test_abc")
    monkeypatch.setenv("CSV_PATH", "donors.csv")


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("services.donor_sync.main.configure_logging") as mock:
        yield mock


def _run_sync(result=None, error=None):
    mock = AsyncMock(return_value=result, side_effect=error)
    return patch("services.donor_sync.main.run_donor_sync", mock)


class FakeClientContext:
    """Stands in for MollieClient.from_settings(...) used as a context manager."""

    def __init__(self, client):
        self.client = client

    async def __aenter__(self):
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class TestParser:

    def test_defaults(self):
        args = cli.create_parser().parse_args([])

        assert args.csv_path is None
        assert args.cleanup_since is None
        assert args.confirm_delete is False

    def test_cleanup_flags(self):
        args = cli.create_parser().parse_args(["--cleanup-since", "2024-05-03", "--confirm-delete"])

        assert args.cleanup_since == date(2024, 5, 3)
        assert args.confirm_delete is True

    def test_bad_date_is_rejected(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["--cleanup-since", "03-05-2024"])

    def test_parse_date(self):
        assert cli.parse_date("2024-05-03") == date(2024, 5, 3)
        with pytest.raises(ValueError, match="Expected YYYY-MM-DD"):
            cli.parse_date("gisteren")


class TestMain:

    async def test_success(self):
        with _run_sync(PipelineReport(customers=StageReport(created=1))) as run:
            assert await cli.main([]) == cli.EXIT_OK

        config = run.await_args.args[0]
        assert config.csv_path == "donors.csv"

    async def test_csv_path_flag_overrides_env(self):
        with _run_sync(PipelineReport()) as run:
            await cli.main(["--csv-path", "other.csv"])

        assert run.await_args.args[0].csv_path == "other.csv"

    async def test_logging_configured_from_flags(self, quiet_logging):
        with _run_sync(PipelineReport()):
            await cli.main(["--log-level", "DEBUG", "--log-format", "text"])

        quiet_logging.assert_called_with("DEBUG", "text", "donor-sync", "development")

    async def test_item_failures_exit_nonzero(self):
        with _run_sync(PipelineReport(mandates=StageReport(failed=1))):
            assert await cli.main([]) == cli.EXIT_FAILURE

    async def test_parse_errors_exit_nonzero(self):
        with _run_sync(PipelineReport(parse_errors=1)):
            assert await cli.main([]) == cli.EXIT_FAILURE

    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("MOLLIE_API_KEY")

        with _run_sync(PipelineReport()) as run:
            assert await cli.main([]) == cli.EXIT_CONFIG_ERROR

        run.assert_not_awaited()

    @pytest.mark.parametrize("error", [
        FileNotFoundError("donors.csv"),
        FetchError("unreadable"),
        DuplicateKeyError("customer", "Jan Jansen"),
        RuntimeError("boom"),
    ])
    async def test_fatal_errors(self, error):
        with _run_sync(error=error):
            assert await cli.main([]) == cli.EXIT_FAILURE


class TestCleanup:

    async def test_dry_run_lists_only(self, fake_mollie):
        fake_mollie.add_customer("Jan Jansen")

        with patch.object(cli.MollieClient, "from_settings", return_value=FakeClientContext(fake_mollie)):
            code = await cli.main(["--cleanup-since", "2000-01-01"])

        assert code == cli.EXIT_OK
        assert fake_mollie.created("delete_customer") == []
        assert len(fake_mollie.customers) == 1

    async def test_confirmed_delete(self, fake_mollie):
        fake_mollie.add_customer("Jan Jansen")
        fake_mollie.add_customer("Piet Vries")

        with patch.object(cli.MollieClient, "from_settings", return_value=FakeClientContext(fake_mollie)):
            code = await cli.main(["--cleanup-since", "2000-01-01", "--confirm-delete"])

        assert code == cli.EXIT_OK
        assert fake_mollie.customers == []

    async def test_partial_delete_exits_nonzero(self, fake_mollie):
        keep = fake_mollie.add_customer("Jan Jansen")
        fake_mollie.fail["delete_customer"] = {keep.id}

        with patch.object(cli.MollieClient, "from_settings", return_value=FakeClientContext(fake_mollie)):
            code = await cli.main(["--cleanup-since", "2000-01-01", "--confirm-delete"])

        assert code == cli.EXIT_FAILURE
