import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backoffice.api.dependencies import get_quote_service, get_source, get_tracker
from backoffice.db.store import StoreUnavailableError
from backoffice.domain.imports.target_schemas import PRICELIST
from backoffice.domain.imports.writer import write_records
from backoffice.domain.pricing.quotes import PriceQuoteService
from backoffice.main import app

REQUEST_TIMEOUT = 5  # seconds

PRICELIST_CSV = b"Kode Item,Family,Harga Normal\nKI-1,Ring,100\nKI-2,Ring,200\nKI-3,Ring,\n"


@pytest.fixture
def client(tracker, file_source, store):
    app.dependency_overrides[get_tracker] = lambda: tracker
    app.dependency_overrides[get_source] = lambda: file_source
    app.dependency_overrides[get_quote_service] = lambda: PriceQuoteService(store)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _submit(client, **overrides):
    body = {
        "file_reference": "imports/prices.csv",
        "file_name": "prices.csv",
        "target_schema": "pricelist",
        "idempotency_key": "key-1",
    }
    body.update(overrides)
    return client.post("/imports", json=body, timeout=REQUEST_TIMEOUT)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Back Office Import API", "version": "1.0.0"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["import_jobs"] == {}


def test_submit_returns_job_id_and_is_idempotent(client, tracker, file_source):
    file_source.add("imports/prices.csv", PRICELIST_CSV)

    first = _submit(client)
    second = _submit(client)

    assert first.status_code == 202
    assert first.json()["created"] is True
    assert second.status_code == 202
    assert second.json()["created"] is False
    assert second.json()["job_id"] == first.json()["job_id"]
    tracker.wait(first.json()["job_id"], timeout=10)


def test_submit_rejects_bad_requests(client):
    assert _submit(client, target_schema="invoices").status_code == 422
    assert _submit(client, import_mode="merge").status_code == 422
    assert _submit(client, idempotency_key="  ").status_code == 422
    response = client.post("/imports", json={"file_name": "prices.csv"})
    assert response.status_code == 422


def test_submit_rejects_job_id_clash(client, tracker, file_source):
    file_source.add("imports/prices.csv", PRICELIST_CSV)

    assert _submit(client, job_id="job-7").status_code == 202
    response = _submit(client, job_id="job-7", idempotency_key="key-2")

    assert response.status_code == 409
    tracker.wait("job-7", timeout=10)


def test_job_status_and_error_report(client, tracker, file_source):
    file_source.add("imports/prices.csv", PRICELIST_CSV)
    job_id = _submit(client).json()["job_id"]
    tracker.wait(job_id, timeout=10)

    response = client.get(f"/import-jobs/{job_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["progress"]["rows_written"] == 2
    assert data["progress"]["rows_failed"] == 1
    assert data["errors"][0]["row"] == 3
    assert data["errors"][0]["field"] == "normal_price"

    report = client.get(f"/import-jobs/{job_id}/errors.csv")
    assert report.status_code == 200
    assert report.headers["content-type"].startswith("text/csv")
    assert f"import-errors-{job_id}.csv" in report.headers["content-disposition"]
    lines = report.text.strip().splitlines()
    assert lines[0] == "row_number,field,original_value,message"
    assert lines[1].startswith("3,normal_price,,")


def test_error_report_missing_for_clean_job(client, tracker, file_source):
    file_source.add("imports/clean.csv", b"Kode Item,Family,Harga Normal\nKI-1,Ring,100\n")
    job_id = _submit(client, file_reference="imports/clean.csv", file_name="clean.csv").json()["job_id"]
    tracker.wait(job_id, timeout=10)

    assert client.get(f"/import-jobs/{job_id}/errors.csv").status_code == 404


def test_unknown_job_returns_404(client):
    assert client.get("/import-jobs/missing").status_code == 404
    assert client.get("/import-jobs/missing/events").status_code == 404
    assert client.get("/import-jobs/missing/errors.csv").status_code == 404


def test_list_jobs_filters_and_paginates(client, tracker, file_source):
    file_source.add("imports/prices.csv", PRICELIST_CSV)
    ids = [_submit(client, idempotency_key=f"key-{index}").json()["job_id"] for index in range(3)]
    for job_id in ids:
        tracker.wait(job_id, timeout=10)

    response = client.get("/import-jobs", params={"status": "completed", "limit": 2})
    data = response.json()

    assert response.status_code == 200
    assert data["total_count"] == 3
    assert len(data["jobs"]) == 2
    assert data["jobs"][0]["errors"] == []
    assert client.get("/import-jobs", params={"target_schema": "staff"}).json()["total_count"] == 0


def test_events_for_finished_job_send_terminal_snapshot(client, tracker, file_source):
    file_source.add("imports/prices.csv", PRICELIST_CSV)
    job_id = _submit(client).json()["job_id"]
    tracker.wait(job_id, timeout=10)

    response = client.get(f"/import-jobs/{job_id}/events")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [line[len("data: "):] for line in response.text.splitlines() if line.startswith("data: ")]
    assert len(events) == 1
    assert json.loads(events[0])["status"] == "completed"


def test_upload_stages_file_and_queues_import(client, tracker, file_source):
    response = client.post(
        "/imports/upload",
        files={"file": ("prices.csv", PRICELIST_CSV, "text/csv")},
        data={"target_schema": "pricelist", "idempotency_key": "upload-1"},
    )

    assert response.status_code == 202
    job = tracker.wait(response.json()["job_id"], timeout=10)
    assert job.request.file_reference in file_source.files
    assert job.progress.rows_written == 2


def test_repeated_upload_with_same_key_stages_once(client, tracker, file_source):
    responses = [
        client.post(
            "/imports/upload",
            files={"file": ("prices.csv", PRICELIST_CSV, "text/csv")},
            data={"target_schema": "pricelist", "idempotency_key": "same"},
        )
        for _ in range(3)
    ]

    assert [response.status_code for response in responses] == [202, 202, 202]
    assert [response.json()["created"] for response in responses] == [True, False, False]
    assert len({response.json()["job_id"] for response in responses}) == 1
    assert list(file_source.files) == ["imports/1_prices.csv"]
    tracker.wait(responses[0].json()["job_id"], timeout=10)


def test_upload_rejects_unsupported_extension(client):
    response = client.post(
        "/imports/upload",
        files={"file": ("prices.pdf", b"%PDF", "application/pdf")},
        data={"target_schema": "pricelist", "idempotency_key": "upload-2"},
    )

    assert response.status_code == 400


def test_price_quote(client, store):
    write_records(store, PRICELIST, [(1, {"serial_number": "S1", "normal_price": "1000.00", "special_price": "900.00"})])

    response = client.get("/price/quote", params={"serial_number": "S1", "discount_amount": "100"})

    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "serial"
    assert Decimal(data["normal_price"]) == Decimal("1000")
    assert Decimal(data["unit_price"]) == Decimal("900")
    assert Decimal(data["final_price"]) == Decimal("800")


def test_price_quote_not_found_is_not_an_error(client):
    response = client.get("/price/quote", params={"item_code": "nothing"})

    assert response.status_code == 200
    assert response.json()["source"] == "not_found"
    assert Decimal(response.json()["final_price"]) == 0


def test_price_quote_rejects_negative_discount(client):
    assert client.get("/price/quote", params={"discount_amount": "-5"}).status_code == 422


def test_price_quote_store_outage_returns_503(client):
    class BrokenService:
        def quote(self, context, **kwargs):
            raise StoreUnavailableError("database is down")

    app.dependency_overrides[get_quote_service] = lambda: BrokenService()

    assert client.get("/price/quote", params={"serial_number": "S1"}).status_code == 503
