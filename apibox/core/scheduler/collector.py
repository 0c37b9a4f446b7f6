"""Hourly collector — polls the tracked instrument so its history fills in unattended."""
import structlog

from apibox.core.proxy.executor import ProxyExecutor
from apibox.core.proxy.params import RequestParams
from apibox.core.scheduler.scheduler import ScheduledJob, Scheduler

logger = structlog.get_logger()

COLLECTOR_JOB_ID = "forex-history-collector"


class HistoryCollector:
    """Runs the tracked quote through the executor; caching and history come for free."""

    def __init__(
        self,
        executor: ProxyExecutor,
        api_name: str = "forex",
        endpoint: str = "quote",
        instrument: str = "XAU",
        currency: str = "USD",
    ):
        self.executor = executor
        self.api_name = api_name
        self.endpoint = endpoint
        self.instrument = instrument
        self.currency = currency

    def params(self) -> RequestParams:
        return RequestParams(path_params={"instrument": self.instrument, "currency": self.currency})

    async def collect(self) -> None:
        # Errors propagate so the scheduler can count them.
        await self.executor.run(self.api_name, self.endpoint, self.params())
        logger.info("collector.ok", instrument=self.instrument, currency=self.currency)

    def register(
        self,
        scheduler: Scheduler,
        interval_ms: int = 3_600_000,
        max_errors: int = 5,
        run_immediately: bool = False,
    ) -> ScheduledJob:
        return scheduler.add_job(
            COLLECTOR_JOB_ID,
            interval_ms,
            self.collect,
            name=f"{self.api_name}.{self.endpoint} {self.instrument}/{self.currency} hourly",
            max_errors=max_errors,
            align_to_hour_boundary=True,
            run_immediately=run_immediately,
        )
