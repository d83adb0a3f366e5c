from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_init

from releasetracker.core.config import Settings, get_settings

# Broker settings only; full validation happens once the worker boots
_boot_settings = Settings()

celery_app = Celery(
    "releasetracker",
    broker=_boot_settings.redis_url,
    backend=_boot_settings.redis_url,
    include=["releasetracker.tasks"],
)

celery_app.conf.update(
    result_expires=3600,
    task_acks_late=True,
    worker_max_tasks_per_child=100,
    worker_prefetch_multiplier=1,

    # Connection settings
    broker_connection_retry_on_startup=True,
    broker_pool_limit=10,

    # RedBeat scheduler configuration
    beat_scheduler='redbeat.schedulers:RedBeatScheduler',
    redbeat_redis_url=_boot_settings.redis_url,
    redbeat_key_prefix='releasetracker:beat:',

    task_routes={
        'releasetracker.tasks.discover_release_dates': {'queue': 'notifications'},
        'releasetracker.tasks.notify_daily_releases': {'queue': 'notifications'},
        'releasetracker.tasks.refresh_recent_cache': {'queue': 'cache'},
        'releasetracker.tasks.refresh_upcoming_cache': {'queue': 'cache'},
    },

    # Scheduled tasks (UTC)
    beat_schedule={
        "discover-release-dates": {
            "task": "releasetracker.tasks.discover_release_dates",
            "schedule": crontab(hour=11, minute=0),
        },
        # After discovery so newly found same-day dates are included
        "notify-daily-releases": {
            "task": "releasetracker.tasks.notify_daily_releases",
            "schedule": crontab(hour=17, minute=0),
        },
        "refresh-recent-cache": {
            "task": "releasetracker.tasks.refresh_recent_cache",
            "schedule": crontab(hour=6, minute=0),
        },
        "refresh-upcoming-cache": {
            "task": "releasetracker.tasks.refresh_upcoming_cache",
            "schedule": crontab(hour=6, minute=30),
        },
    },
    timezone=_boot_settings.timezone,
    enable_utc=True,
)


@worker_init.connect
def validate_worker_settings(**kwargs):
    get_settings()
