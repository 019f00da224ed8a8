"""API integration tests for the Ledger Import Pipeline."""

import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import get_file_service, get_job_store, get_submitter
from app.core.models import JobStatus
from main import app

HTTP_200_OK = 200
HTTP_202_ACCEPTED = 202
HTTP_400_BAD_REQUEST = 400
HTTP_404_NOT_FOUND = 404
HTTP_409_CONFLICT = 409

CSV_CONTENT = "data,descricao,valor,documento\n2024-01-02,Venda loja,100.00,N1\n2024-01-03,Frete,-20.00,N2\n"


@pytest.fixture
def submitted() -> list[str]:
    """Job ids handed to the worker pool."""
    return []


@pytest.fixture
def client(job_store, file_service, runner, submitted):
    """TestClient whose jobs run synchronously against the test database."""

    def submit(job_id: str) -> None:
        submitted.append(job_id)
        runner.run_job(job_id)

    app.dependency_overrides[get_job_store] = lambda: job_store
    app.dependency_overrides[get_file_service] = lambda: file_service
    app.dependency_overrides[get_submitter] = lambda: submit
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client: TestClient, content: str = CSV_CONTENT, **form):
    data = {"account_id": "acc-1", "channel": "Banco", **form}
    files = {"file": ("extrato.csv", content.encode(), "text/csv")}
    return client.post("/imports", data=data, files=files)


def test_health(client) -> None:
    """Test the /health endpoint returns status ok."""
    response = client.get("/health")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if response.json() != {"status": "ok"}:
        msg = f"Expected response {{'status': 'ok'}}, got {response.json()}"
        raise AssertionError(msg)


def test_scalar_docs(client) -> None:
    """Test the /scalar endpoint returns the API reference page."""
    response = client.get("/scalar")
    if response.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {response.status_code}"
        raise AssertionError(msg)
    if "openapi" not in response.text.lower():
        msg = "Expected 'openapi' in response text"
        raise AssertionError(msg)


def test_import_lifecycle(client, submitted) -> None:
    """Upload a file, then poll the job until it is finished."""
    response = _upload(client)
    if response.status_code != HTTP_202_ACCEPTED:
        msg = f"Expected status {HTTP_202_ACCEPTED}, got {response.status_code}: {response.text}"
        raise AssertionError(msg)
    body = response.json()
    if body["previous_job_id"] is not None or submitted != [body["job_id"]]:
        msg = f"Unexpected upload response {body} (submitted={submitted})"
        raise AssertionError(msg)

    status_resp = client.get(f"/imports/{body['job_id']}")
    if status_resp.status_code != HTTP_200_OK:
        msg = f"Expected status {HTTP_200_OK}, got {status_resp.status_code}"
        raise AssertionError(msg)
    job = status_resp.json()
    if job["status"] != JobStatus.DONE.value or job["imported_count"] != 2 or job["channel"] != "banco":
        msg = f"Unexpected job record {job}"
        raise AssertionError(msg)


def test_reupload_reports_previous_job(client) -> None:
    """Uploading the same file again points at the earlier import and adds no rows."""
    first = _upload(client).json()["job_id"]
    second = _upload(client).json()
    if second["previous_job_id"] != first:
        msg = f"Expected previous_job_id {first}, got {second['previous_job_id']}"
        raise AssertionError(msg)
    job = client.get(f"/imports/{second['job_id']}").json()
    if (job["imported_count"], job["duplicate_count"]) != (0, 2):
        msg = f"Expected 0 imported and 2 duplicates, got {job}"
        raise AssertionError(msg)

    history = client.get("/imports", params={"account_id": "acc-1"}).json()
    if [item["id"] for item in history] != [second["job_id"], first]:
        msg = f"Expected newest-first history, got {[item['id'] for item in history]}"
        raise AssertionError(msg)


def test_empty_upload_rejected(client) -> None:
    """Empty files are rejected before a job is created."""
    response = _upload(client, content="")
    if response.status_code != HTTP_400_BAD_REQUEST:
        msg = f"Expected status {HTTP_400_BAD_REQUEST}, got {response.status_code}"
        raise AssertionError(msg)


def test_unknown_job(client) -> None:
    """Unknown job ids return 404 for polling and cancelling."""
    for response in (client.get("/imports/nope"), client.post("/imports/nope/cancel")):
        if response.status_code != HTTP_404_NOT_FOUND:
            msg = f"Expected status {HTTP_404_NOT_FOUND}, got {response.status_code}"
            raise AssertionError(msg)


def test_cancel_running_and_finished_jobs(client, job_store) -> None:
    """Cancelling a running job is accepted; a finished job conflicts."""
    running = job_store.create(account_id="acc-1", channel="banco", file_name="a.csv", file_locator="imports/a.csv")
    response = client.post(f"/imports/{running.id}/cancel")
    if response.status_code != HTTP_202_ACCEPTED or not job_store.is_cancel_requested(running.id):
        msg = f"Expected 202 and a flagged job, got {response.status_code}"
        raise AssertionError(msg)

    finished = _upload(client).json()["job_id"]
    response = client.post(f"/imports/{finished}/cancel")
    if response.status_code != HTTP_409_CONFLICT:
        msg = f"Expected status {HTTP_409_CONFLICT}, got {response.status_code}"
        raise AssertionError(msg)
