from django.apps import AppConfig


class FeedSyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'feedsync'
    verbose_name = 'Catalog sync and feed export'
