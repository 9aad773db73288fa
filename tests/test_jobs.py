from ordercore.config import Settings
from ordercore.jobs import scheduler as scheduler_module
from ordercore.jobs.ndr_jobs import auto_resolve_pending_ndrs
from ordercore.jobs.scheduler import get_job_status, shutdown_scheduler, start_scheduler
from ordercore.models import OrderStatus


async def test_job_wraps_auto_resolution(services, make_order):
    order = await make_order(status=OrderStatus.SHIPPED, tracking_number="T")
    await services.ndr.create_ndr(order.id, "Incomplete address")
    await services.ndr.create_ndr(order.id, "Van broke down")

    summary = await auto_resolve_pending_ndrs(services.ndr)

    assert summary["processed"] == 1
    assert summary["skipped"] == 1
    assert summary["failed"] == 0


async def test_job_swallows_engine_errors():
    class BrokenNDRService:
        async def auto_resolve_ndrs(self):
            raise RuntimeError("database unavailable")

    assert await auto_resolve_pending_ndrs(BrokenNDRService()) is None


async def test_scheduler_disabled_by_default(services):
    assert start_scheduler(services.ndr, Settings(NDR_AUTO_RESOLVE_ENABLED=False)) is False
    assert get_job_status() == []


async def test_scheduler_registers_auto_resolve_job(services):
    config = Settings(NDR_AUTO_RESOLVE_ENABLED=True, NDR_AUTO_RESOLVE_INTERVAL_MINUTES=15)
    try:
        assert start_scheduler(services.ndr, config) is True
        jobs = get_job_status()
        assert [job["id"] for job in jobs] == ["auto_resolve_pending_ndrs"]
        assert "0:15:00" in jobs[0]["trigger"]
    finally:
        shutdown_scheduler()
    assert scheduler_module.scheduler is None
