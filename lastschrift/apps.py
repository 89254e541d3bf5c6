from django.apps import AppConfig


class LastschriftConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lastschrift"
    verbose_name = "SEPA-Lastschriften und Abrechnungs-Runs"

    def ready(self):
        from . import signals  # noqa: F401
