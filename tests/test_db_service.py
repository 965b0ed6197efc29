# tests/test_db_service.py
from concurrent.futures import CancelledError

import pytest

from astrocat.db_service import DbService
from astrocat.errors import DbOpenFailed
from astrocat.models import AstroFile


def test_operations_run_in_order(tmp_path):
    service = DbService(str(tmp_path / "astrocat.db"))
    service.initialize()
    updated = []
    service.repository.astrofile_updated.connect(updated.append)

    futures = [service.add_astrofile(AstroFile(full_path=f"/data/{i}.fits")) for i in range(5)]
    model = service.load_model().result(timeout=10)

    assert [f.result().full_path for f in futures] == [f"/data/{i}.fits" for i in range(5)]
    assert len(model) == 5
    assert len(updated) == 5
    assert service.wait_idle(timeout=5)
    assert service.queue_length == 0
    service.close()


def test_failed_operation_reports_through_future(tmp_path):
    service = DbService(str(tmp_path / "astrocat.db"))
    service.initialize()
    future = service.add_astrofile(None)

    with pytest.raises(AttributeError):
        future.result(timeout=10)
    # The worker survives the failure.
    assert service.load_model().result(timeout=10) == []
    service.close()


def test_initialize_failure_is_reported(tmp_path):
    blocker = tmp_path / "not-a-folder"
    blocker.write_text("")
    service = DbService(str(blocker / "astrocat.db"))
    messages = []
    service.db_failed_to_initialize.connect(messages.append)

    with pytest.raises(DbOpenFailed):
        service.initialize()
    assert len(messages) == 1


def test_operations_after_cancel_finish_as_cancelled(tmp_path):
    service = DbService(str(tmp_path / "astrocat.db"))
    service.initialize()
    service.cancel()
    future = service.load_model()

    assert future.done()
    assert future.cancelled()
    with pytest.raises(CancelledError):
        future.result(timeout=2)
    assert service.queue_length == 0
    assert service.wait_idle(timeout=2)


def test_operations_after_close_finish_as_cancelled(tmp_path):
    service = DbService(str(tmp_path / "astrocat.db"))
    service.initialize()
    queued = service.add_astrofile(AstroFile(full_path="/data/m42.fits"))
    service.close()

    # Queued before close: still runs.
    assert queued.result(timeout=10).full_path == "/data/m42.fits"
    late = service.add_astrofile(AstroFile(full_path="/data/m43.fits"))
    assert late.cancelled()
