"""
Asset hierarchy app configuration.
"""
from django.apps import AppConfig


class HierarchyConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.hierarchy'
    verbose_name = 'Asset Hierarchy'
