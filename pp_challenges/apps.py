from django.apps import AppConfig


class PpChallengesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'pp_challenges'
    verbose_name = 'Challenges'
