from django.apps import AppConfig


class PpGamesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'pp_games'
    verbose_name = 'Game status'
