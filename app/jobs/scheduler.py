"""
Background Jobs - scheduling of the coordinator maintenance jobs
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import timedelta
import logging

from jobs.coordinator_jobs import sweep_leases_job, evict_link_cache_job, check_rd_expiry_job
from utils import now_utc

logger = logging.getLogger('main')

JOB_DEFAULTS = {'max_instances': 1, 'coalesce': True}


class JobScheduler:
    """Owns the APScheduler instance for one Flask app"""

    def __init__(self):
        self.scheduler = BackgroundScheduler(job_defaults=JOB_DEFAULTS, timezone='UTC')
        self._jobs_registered = False

    @property
    def running(self):
        return self.scheduler.running

    def init_app(self, app, coordinator_settings):
        """Register the coordinator jobs and start the scheduler"""
        self._register_jobs(app, coordinator_settings)
        self.scheduler.start()
        app.extensions['job_scheduler'] = self
        logger.info("Job scheduler initialized")

    def _register_jobs(self, app, coordinator_settings):
        """Register all scheduled jobs"""
        if self._jobs_registered:
            return

        self.scheduler.add_job(
            func=sweep_leases_job,
            trigger=IntervalTrigger(seconds=coordinator_settings['lease_sweep_interval_seconds']),
            id='sweep_rd_leases',
            name='Sweep stale RD leases',
            args=[app],
        )

        self.scheduler.add_job(
            func=evict_link_cache_job,
            trigger=IntervalTrigger(minutes=coordinator_settings['link_cache_sweep_interval_minutes']),
            id='evict_rd_link_cache',
            name='Evict expired RD links',
            args=[app],
        )

        # First run shortly after startup, then on the regular interval
        first_check = now_utc() + timedelta(seconds=coordinator_settings['expiry_check_initial_delay_seconds'])
        self.scheduler.add_job(
            func=check_rd_expiry_job,
            trigger=IntervalTrigger(
                hours=coordinator_settings['expiry_check_interval_hours'],
                start_date=first_check,
            ),
            id='check_rd_expiry',
            name='Check RD subscription expiry',
            args=[app],
        )

        self._jobs_registered = True
        logger.info("Background jobs registered")

    def get_jobs(self):
        return [
            {'id': job.id, 'name': job.name, 'next_run_time': job.next_run_time}
            for job in self.scheduler.get_jobs()
        ]

    def shutdown(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Job scheduler shutdown")
