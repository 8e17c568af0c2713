from app.main import build_scheduler
from app.services.exchange_rates import rate_cache


def test_health_ok(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["db"] is True
    assert body["payment_gateway"] is True
    assert body["exchange_rates_cached"] is True


def test_health_reports_cold_rate_cache(client):
    rate_cache.invalidate()
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["exchange_rates_cached"] is False


def test_scheduler_runs_only_the_order_reaper():
    jobs = build_scheduler().get_jobs()
    assert [job.id for job in jobs] == ["cancel_expired_orders"]
