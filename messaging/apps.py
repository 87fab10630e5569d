from importlib import import_module

from django.apps import AppConfig


class MessagingConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "messaging"
    verbose_name = "Messaging"

    def ready(self) -> None:
        # Register model signal handlers that publish message changes.
        import_module("messaging.signals")
