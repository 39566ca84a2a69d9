"""
Hierarchy serializers.

Read serializers expose parent ids; create serializers take the parent as
a primary key. Parents cannot be changed after creation.
"""
from rest_framework import serializers

from apps.hierarchy.models import Plant, Area, Sector, Asset


ENTITY_FIELDS = ['id', 'name', 'description', 'created_at', 'updated_at']


class PlantSerializer(serializers.ModelSerializer):

    class Meta:
        model = Plant
        fields = ENTITY_FIELDS + ['code']
        read_only_fields = ['id', 'created_at', 'updated_at']


class AreaSerializer(serializers.ModelSerializer):

    plant = serializers.PrimaryKeyRelatedField(queryset=Plant.objects.all())

    class Meta:
        model = Area
        fields = ENTITY_FIELDS + ['plant']
        read_only_fields = ['id', 'created_at', 'updated_at']


class SectorSerializer(serializers.ModelSerializer):

    area = serializers.PrimaryKeyRelatedField(queryset=Area.objects.all())

    class Meta:
        model = Sector
        fields = ENTITY_FIELDS + ['area']
        read_only_fields = ['id', 'created_at', 'updated_at']


class AssetSerializer(serializers.ModelSerializer):

    sector = serializers.PrimaryKeyRelatedField(queryset=Sector.objects.all())
    name = serializers.CharField(max_length=255, required=False)

    class Meta:
        model = Asset
        fields = ENTITY_FIELDS + [
            'tag', 'serial_number', 'manufacturing_year',
            'sector', 'area', 'plant'
        ]
        read_only_fields = ['id', 'area', 'plant', 'created_at', 'updated_at']


class PlantUpdateSerializer(serializers.ModelSerializer):

    class Meta:
        model = Plant
        fields = ['name', 'description', 'code']


class AreaUpdateSerializer(serializers.ModelSerializer):

    class Meta:
        model = Area
        fields = ['name', 'description']


class SectorUpdateSerializer(serializers.ModelSerializer):

    class Meta:
        model = Sector
        fields = ['name', 'description']


class AssetUpdateSerializer(serializers.ModelSerializer):

    class Meta:
        model = Asset
        fields = ['name', 'description', 'tag', 'serial_number', 'manufacturing_year']
