from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from homework_validator.main import app


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def test_http_metrics_increment_on_2xx_and_4xx():
    client = TestClient(app)

    # Baselines
    before_ok = _get_metric_count(
        "homework_validator_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    before_dur_ok = _get_metric_count(
        "homework_validator_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )
    before_404 = _get_metric_count(
        "homework_validator_http_requests_total", {"method": "GET", "path": "/nope", "status_class": "4xx"}
    )

    assert client.get("/health").status_code == 200
    assert client.get("/nope").status_code == 404

    after_ok = _get_metric_count(
        "homework_validator_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}
    )
    after_dur_ok = _get_metric_count(
        "homework_validator_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}
    )
    after_404 = _get_metric_count(
        "homework_validator_http_requests_total", {"method": "GET", "path": "/nope", "status_class": "4xx"}
    )

    assert after_ok >= before_ok + 1
    assert after_dur_ok >= before_dur_ok + 1
    assert after_404 >= before_404 + 1


def test_clip_routes_are_labelled_by_template():
    with TestClient(app) as client:
        before = _get_metric_count(
            "homework_validator_http_requests_total",
            {"method": "GET", "path": "/api/session/speech/{clip_id}", "status_class": "4xx"},
        )
        assert client.get("/api/session/speech/abc123").status_code == 404
        after = _get_metric_count(
            "homework_validator_http_requests_total",
            {"method": "GET", "path": "/api/session/speech/{clip_id}", "status_class": "4xx"},
        )
    assert after == before + 1


def test_interview_metrics_exposed():
    with TestClient(app) as client:
        client.post("/api/session/answer", json={"text": "nobody asked"})
        r = client.get("/metrics")
    assert r.status_code == 200
    text = r.text
    assert "homework_validator_http_requests_total" in text
    assert "homework_validator_question_rounds_total" in text
