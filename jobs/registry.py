"""Registry of engine jobs by name."""

from db.config import Settings
from db.enums import ProviderAction
from jobs import provider_events
from jobs.base import JobDefinition
from jobs.config_monitor import monitor_configuration
from jobs.sync_titles import sync_provider_titles
from jobs.titles_monitor import monitor_provider_titles

SYNC_TITLES_JOB = "syncIPTVProviderTitles"
TITLES_MONITOR_JOB = "providerTitlesMonitor"
PROVIDER_ADDED_JOB = "iptvProviderAdded"
PROVIDER_ENABLED_JOB = "iptvProviderEnabled"
PROVIDER_CATEGORIES_CHANGED_JOB = "iptvProviderCategoriesChanged"
PROVIDER_DISABLED_JOB = "iptvProviderDisabled"
PROVIDER_DELETED_JOB = "iptvProviderDeleted"
CONFIG_MONITOR_JOB = "monitorConfiguration"

ACTION_JOBS = {
    ProviderAction.ADDED: PROVIDER_ADDED_JOB,
    ProviderAction.ENABLED: PROVIDER_ENABLED_JOB,
    ProviderAction.CATEGORIES_CHANGED: PROVIDER_CATEGORIES_CHANGED_JOB,
    ProviderAction.DISABLED: PROVIDER_DISABLED_JOB,
    ProviderAction.DELETED: PROVIDER_DELETED_JOB,
}


def build_job_definitions(settings: Settings) -> list[JobDefinition]:
    return [
        JobDefinition(
            name=SYNC_TITLES_JOB,
            description="Fetch titles of every enabled provider and match them against TMDB",
            handler=sync_provider_titles,
            interval=settings.sync_titles_interval,
            post_execute=(TITLES_MONITOR_JOB,),
        ),
        JobDefinition(
            name=TITLES_MONITOR_JOB,
            description="Reconcile canonical titles of provider titles changed since the last run",
            handler=monitor_provider_titles,
            interval=settings.titles_monitor_interval,
        ),
        JobDefinition(
            name=PROVIDER_ADDED_JOB,
            description="Register, verify and sync newly added providers",
            handler=provider_events.provider_added,
            post_execute=(TITLES_MONITOR_JOB,),
            action=ProviderAction.ADDED,
        ),
        JobDefinition(
            name=PROVIDER_ENABLED_JOB,
            description="Re-register and sync enabled providers",
            handler=provider_events.provider_enabled,
            post_execute=(TITLES_MONITOR_JOB,),
            action=ProviderAction.ENABLED,
        ),
        JobDefinition(
            name=PROVIDER_CATEGORIES_CHANGED_JOB,
            description="Drop titles of disabled categories and sync newly enabled ones",
            handler=provider_events.provider_categories_changed,
            action=ProviderAction.CATEGORIES_CHANGED,
        ),
        JobDefinition(
            name=PROVIDER_DISABLED_JOB,
            description="Remove disabled providers from the catalog",
            handler=provider_events.provider_disabled,
            action=ProviderAction.DISABLED,
        ),
        JobDefinition(
            name=PROVIDER_DELETED_JOB,
            description="Remove deleted providers from the catalog and drop their data",
            handler=provider_events.provider_deleted,
            action=ProviderAction.DELETED,
        ),
        JobDefinition(
            name=CONFIG_MONITOR_JOB,
            description="Re-apply settings overrides and refresh the provider registry from the store",
            handler=monitor_configuration,
            interval=settings.config_monitor_interval,
        ),
    ]
