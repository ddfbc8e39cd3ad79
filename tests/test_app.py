"""End-to-end tests: the three tasks together, shutdown, and the CLI."""

import asyncio
import typing

import httpx
import pytest

from hdas import cli
from hdas.cleaner import Cleaner
from hdas.config import Settings
from hdas.database import Database
from hdas.errors import StoreError
from hdas.exporter import CollectorConnection, Exporter
from hdas.main import App, create_app
from hdas.models import HeartRateSample
from hdas.shutdown import ShutdownNotifier
from tests.conftest import exported_flags, unused_port
from tests.test_ingest import HEART_RATE_METRIC, SLEEP_METRIC, WEIGHT_METRIC, payload


def _settings(db_url, collector_port):
    return Settings(
        database_url=db_url,
        listen_addr=("127.0.0.1", 0),
        collector_addr=("127.0.0.1", collector_port),
        export_interval=0.05,
        clean_interval=0.05,
    )


@pytest.mark.asyncio
async def test_all_tasks_stop_cleanly_on_shutdown(db_url):
    notifier = ShutdownNotifier(capacity=3)
    run = asyncio.create_task(App(_settings(db_url, unused_port())).run(notifier))

    await asyncio.sleep(0.5)
    assert not run.done()
    assert notifier.receiver_count == 3

    notifier.trigger()
    await asyncio.wait_for(run, 10)
    assert run.exception() is None


@pytest.mark.asyncio
async def test_startup_failure_is_raised(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'hdas.db'}"
    with pytest.raises(StoreError):
        await App(_settings(url, unused_port())).run(ShutdownNotifier())


@pytest.mark.asyncio
async def test_ingested_samples_are_forwarded_then_purged(db, collector_server):
    """Ingest -> export -> clean, with the exporter and cleaner running as tasks."""
    transport = httpx.ASGITransport(app=create_app(db))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        body = payload(HEART_RATE_METRIC, SLEEP_METRIC, WEIGHT_METRIC)
        assert (await client.post("/health_data", json=body)).status_code == 202

    notifier = ShutdownNotifier()
    exporter = Exporter(db, CollectorConnection("127.0.0.1", collector_server.port), interval=0.02)
    cleaner = Cleaner(db, interval=0.02)
    tasks = [
        asyncio.create_task(exporter.run(notifier.subscribe())),
        asyncio.create_task(cleaner.run(notifier.subscribe())),
    ]

    lines = await collector_server.wait_for_lines(5)
    await asyncio.sleep(0.2)
    notifier.trigger()
    await asyncio.wait_for(asyncio.gather(*tasks), 2)

    assert sorted(lines) == sorted([
        "put health_data_heart_rate 1658527301000 85",
        "put health_data_heart_rate 1658527488000 76",
        "put health_data_weight_body_mass 1658556780000 3.924",
        "put health_data_sleep_analysis 1658528553000 5.627450701958604 type=in_bed",
        "put health_data_sleep_analysis 1658528553000 5.6499999999999995 type=asleep",
    ])
    assert await exported_flags(db, HeartRateSample) == {}


def test_cli_version(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--version"])
    assert exc.value.code == 0
    assert "hdas" in capsys.readouterr().out


def test_cli_rejects_bad_address(capsys):
    assert cli.main(["--collector-addr", "nowhere"]) == 2
    assert "HOST:PORT" in capsys.readouterr().err


def test_cli_flags_override_settings(monkeypatch):
    monkeypatch.delenv("HDAS_DATABASE_URL", raising=False)
    args = cli.build_parser().parse_args(
        ["--db", "sqlite+aiosqlite:///other.db", "--listen-addr", "0.0.0.0:80", "--log-level", "debug"]
    )
    settings = cli._settings_from_args(args)
    assert settings.database_url == "sqlite+aiosqlite:///other.db"
    assert settings.listen_addr == ("0.0.0.0", 80)
    assert settings.log_level == "DEBUG"


def test_cli_exits_non_zero_when_startup_fails(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'hdas.db'}"
    monkeypatch.setattr("hdas.cli.logging.basicConfig", lambda **kwargs: None)
    assert cli.main(["--db", url, "--collector-addr", f"127.0.0.1:{unused_port()}"]) == 1


def test_cli_log_format_is_plain_ascii(tmp_path, monkeypatch):
    calls = []
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'hdas.db'}"
    monkeypatch.setattr("hdas.cli.logging.basicConfig", lambda **kwargs: calls.append(kwargs))

    cli.main(["--db", url, "--collector-addr", f"127.0.0.1:{unused_port()}"])

    assert calls[0]["format"] == "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    assert calls[0]["format"].isascii()


def test_app_run_notifier_is_optional():
    hints = typing.get_type_hints(App.run)
    assert hints["notifier"] == typing.Optional[ShutdownNotifier]


def test_database_handle_is_closed_after_run(db_url, monkeypatch):
    closed = []
    original_close = Database.close

    async def tracking_close(self):
        closed.append(True)
        await original_close(self)

    monkeypatch.setattr(Database, "close", tracking_close)

    async def scenario():
        notifier = ShutdownNotifier()
        notifier.trigger()
        await App(_settings(db_url, unused_port())).run(notifier)

    asyncio.run(scenario())
    assert closed == [True]
