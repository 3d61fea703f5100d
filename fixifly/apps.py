from django.apps import AppConfig


class FixiflyConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'fixifly'

    def ready(self):
        from . import signals  # noqa: F401
