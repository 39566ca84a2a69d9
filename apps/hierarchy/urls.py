"""
Hierarchy API URLs.
"""
from django.urls import path
from apps.hierarchy.views import (
    PlantListView, PlantDetailView,
    AreaListView, AreaDetailView,
    SectorListView, SectorDetailView,
    AssetListView, AssetDetailView,
)

app_name = 'hierarchy'

urlpatterns = [
    path('plants', PlantListView.as_view(), name='plant-list'),
    path('plants/<int:entity_id>', PlantDetailView.as_view(), name='plant-detail'),
    path('areas', AreaListView.as_view(), name='area-list'),
    path('areas/<int:entity_id>', AreaDetailView.as_view(), name='area-detail'),
    path('sectors', SectorListView.as_view(), name='sector-list'),
    path('sectors/<int:entity_id>', SectorDetailView.as_view(), name='sector-detail'),
    path('assets', AssetListView.as_view(), name='asset-list'),
    path('assets/<int:entity_id>', AssetDetailView.as_view(), name='asset-detail'),
]
