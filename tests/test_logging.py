import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from service_tracker.context import AppContext
from service_tracker.logging_utils import log_database_operation
from service_tracker.telemetry import setup_telemetry


def test_store_writes_are_logged_with_document_id(caplog):
    with caplog.at_level(logging.INFO, logger="database"):
        log_database_operation("upsert", "service_status", "2026-03-14_p1", done=True)

    record = caplog.records[-1]
    assert record.getMessage() == "upsert service_status/2026-03-14_p1"
    assert record.collection == "service_status"
    assert record.doc_id == "2026-03-14_p1"
    assert record.done is True


def test_failed_store_write_is_an_error(caplog):
    with caplog.at_level(logging.INFO, logger="database"):
        log_database_operation("transition", "access_requests", "u1", success=False)

    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert record.getMessage() == "transition access_requests/u1 failed"


def test_api_calls_are_logged_by_route_and_caller(
    client: TestClient, staff_headers, caplog
):
    with caplog.at_level(logging.INFO, logger="api"):
        client.get("/api/v1/service-days/2026-03-14/status", headers=staff_headers)

    record = [r for r in caplog.records if r.name == "api"][-1]
    assert record.route == "/api/v1/service-days/{date}/status"
    assert record.path_params == {"date": "2026-03-14"}
    assert record.uid == "staff-1"
    assert record.status_code == 200


def test_rejected_caller_is_a_warning(client: TestClient, caplog):
    with caplog.at_level(logging.INFO, logger="api"):
        client.get("/api/v1/service-days/2026-03-14/status")

    record = [r for r in caplog.records if r.name == "api"][-1]
    assert record.levelno == logging.WARNING
    assert record.uid == ""


def test_telemetry_stays_off_unless_enabled(settings, engine, gateway):
    context = AppContext(settings, engine, gateway)

    assert setup_telemetry(FastAPI(), context) is False
