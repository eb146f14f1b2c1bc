"""Tests for the operational CLI (scripts/product_sync.py)."""
import textwrap

import pytest

from config.settings import load_settings
from job_queue.store_file import FileMessageStore
from scripts import product_sync

pytestmark = pytest.mark.usefixtures("restore_logging")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(textwrap.dedent(f"""
        delivery:
          endpoint_url: https://sync.example.test/products
        queue:
          base_dir: {tmp_path / "queue"}
          poll_interval: 0
          max_idle_polls: 1
        logging:
          log_file: {tmp_path / "logs" / "sync.log"}
    """))
    return path


def test_produce_enqueues_demo_product(config_file, tmp_path):
    assert product_sync.main(["--config", str(config_file), "produce"]) == 0

    store = FileMessageStore(base_dir=str(tmp_path / "queue"))
    claimed = store.claim_next()
    assert claimed.message.payload.model_dump() == product_sync.DEMO_QUEUED_PRODUCT
    assert claimed.message.attempts == 0

    log_text = (tmp_path / "logs" / "sync.log").read_text()
    assert "queue_message_enqueued" in log_text


def test_stats_reports_counts_and_dead_letters(config_file, tmp_path, capsys):
    settings = load_settings(str(config_file))
    product_sync.run_produce(settings)
    (tmp_path / "queue" / "pending" / "00.json").write_text("oops")
    FileMessageStore(base_dir=str(tmp_path / "queue")).claim_next()

    report = product_sync.run_stats(settings)

    assert report["stats"] == {"pending": 0, "in_flight": 1, "dead_letter": 1}
    assert report["dead_letters"] == [{"key": "00", "corrupt": True, "raw": "oops"}]
    assert '"dead_letter": 1' in capsys.readouterr().out


def test_unknown_command_exits(config_file):
    with pytest.raises(SystemExit):
        product_sync.main(["--config", str(config_file), "explode"])
