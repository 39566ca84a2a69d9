"""
Hierarchy REST API views.

List endpoints only return entities the user may view; creation goes
through AuthorizationResolver.can_create against the parent; detail
endpoints check the entity itself through HasEntityPermission.
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import AuthorizationDenied, EntityNotFound
from apps.core.pagination import StandardResultsSetPagination
from apps.core.permissions import IsAuthenticatedUser, HasEntityPermission
from apps.hierarchy.models import Plant, Area, Sector, Asset
from apps.hierarchy.serializers import (
    PlantSerializer, AreaSerializer, SectorSerializer, AssetSerializer,
    PlantUpdateSerializer, AreaUpdateSerializer, SectorUpdateSerializer, AssetUpdateSerializer,
)
from apps.hierarchy.services import EntityService
from apps.rbac.resolver import AuthorizationResolver


class EntityListView(APIView):
    """
    Base for GET (list) and POST (create) on one hierarchy level.

    Subclasses set ``model``, ``serializer_class`` and ``create``.
    """

    model = None
    serializer_class = None
    permission_classes = [IsAuthenticatedUser]
    pagination_class = StandardResultsSetPagination

    def create(self, request, validated_data):
        raise NotImplementedError

    def get(self, request):
        queryset = AuthorizationResolver.visible_queryset(request.user, self.model)

        parent_field = self.model.parent_field
        if parent_field:
            parent_id = request.query_params.get(parent_field)
            if parent_id and parent_id.isdigit():
                queryset = queryset.filter(**{f'{parent_field}_id': int(parent_id)})

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(queryset, request)
        serializer = self.serializer_class(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)

        parent = None
        if self.model.parent_field:
            parent = serializer.validated_data[self.model.parent_field]

        if not AuthorizationResolver.can_create(request.user, self.model.resource, parent):
            raise AuthorizationDenied(
                f"You are not allowed to create {self.model.resource} here.",
                details={'resource': self.model.resource}
            )

        entity = self.create(request, dict(serializer.validated_data))
        return Response(self.serializer_class(entity).data, status=status.HTTP_201_CREATED)


class EntityDetailView(APIView):
    """
    Base for GET, PATCH and DELETE on a single entity.
    """

    model = None
    serializer_class = None
    update_serializer_class = None
    permission_classes = [HasEntityPermission]

    def get_object(self, request, entity_id):
        entity = self.model.objects.filter(pk=entity_id).first()
        if entity is None:
            raise EntityNotFound(
                f"{self.model.entity_type} {entity_id} does not exist",
                details={'entity_type': self.model.entity_type, 'entity_id': entity_id}
            )
        self.check_object_permissions(request, entity)
        return entity

    def get(self, request, entity_id):
        entity = self.get_object(request, entity_id)
        return Response(self.serializer_class(entity).data)

    def patch(self, request, entity_id):
        entity = self.get_object(request, entity_id)
        serializer = self.update_serializer_class(entity, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        entity = EntityService.update(
            entity,
            actor=request.user,
            request=request,
            **serializer.validated_data
        )
        return Response(self.serializer_class(entity).data)

    def delete(self, request, entity_id):
        entity = self.get_object(request, entity_id)
        EntityService.delete(entity, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


def _list_schema(tag, serializer, parent=None):
    parameters = []
    if parent:
        parameters.append(
            OpenApiParameter(parent, OpenApiTypes.INT, description=f'Filter by {parent} id')
        )
    return extend_schema_view(
        get=extend_schema(
            tags=[tag],
            summary=f'List {tag.lower()}',
            description=f'''
List {tag.lower()} visible to the authenticated user.

An entity is visible when the user holds any permission anchored at it or
below it, or a view permission at one of its ancestors. Administrators see
everything.
            ''',
            parameters=parameters,
            responses={200: serializer(many=True)},
        ),
        post=extend_schema(
            tags=[tag],
            summary=f'Create {tag.lower()}',
            description=f'''
Create a new entity. Requires a create or manage permission scoped to the
parent (or one of its ancestors), or the matching `system.create-*`
permission. The entity's own permissions are generated in the same
transaction.
            ''',
            request=serializer,
            responses={
                201: serializer,
                400: OpenApiTypes.OBJECT,
                403: OpenApiTypes.OBJECT,
            },
        ),
    )


def _detail_schema(tag, serializer, update_serializer):
    return extend_schema_view(
        get=extend_schema(
            tags=[tag],
            summary='Get details',
            responses={200: serializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
        ),
        patch=extend_schema(
            tags=[tag],
            summary='Update',
            description='Requires an update (or manage) permission at the entity or an ancestor.',
            request=update_serializer,
            responses={200: serializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
        ),
        delete=extend_schema(
            tags=[tag],
            summary='Delete',
            description='''
Delete the entity and purge its permissions.

Returns 409 while the entity still has children.
            ''',
            responses={
                204: None,
                403: OpenApiTypes.OBJECT,
                404: OpenApiTypes.OBJECT,
                409: OpenApiTypes.OBJECT,
            },
        ),
    )


@_list_schema('Plants', PlantSerializer)
class PlantListView(EntityListView):
    """
    GET /v1/plants
    POST /v1/plants
    """

    model = Plant
    serializer_class = PlantSerializer

    def create(self, request, validated_data):
        name = validated_data.pop('name')
        return EntityService.create_plant(name, actor=request.user, request=request, **validated_data)


@_detail_schema('Plants', PlantSerializer, PlantUpdateSerializer)
class PlantDetailView(EntityDetailView):
    model = Plant
    serializer_class = PlantSerializer
    update_serializer_class = PlantUpdateSerializer


@_list_schema('Areas', AreaSerializer, parent='plant')
class AreaListView(EntityListView):
    """
    GET /v1/areas
    POST /v1/areas
    """

    model = Area
    serializer_class = AreaSerializer

    def create(self, request, validated_data):
        plant = validated_data.pop('plant')
        name = validated_data.pop('name')
        return EntityService.create_area(plant, name, actor=request.user, request=request, **validated_data)


@_detail_schema('Areas', AreaSerializer, AreaUpdateSerializer)
class AreaDetailView(EntityDetailView):
    model = Area
    serializer_class = AreaSerializer
    update_serializer_class = AreaUpdateSerializer


@_list_schema('Sectors', SectorSerializer, parent='area')
class SectorListView(EntityListView):
    """
    GET /v1/sectors
    POST /v1/sectors
    """

    model = Sector
    serializer_class = SectorSerializer

    def create(self, request, validated_data):
        area = validated_data.pop('area')
        name = validated_data.pop('name')
        return EntityService.create_sector(area, name, actor=request.user, request=request, **validated_data)


@_detail_schema('Sectors', SectorSerializer, SectorUpdateSerializer)
class SectorDetailView(EntityDetailView):
    model = Sector
    serializer_class = SectorSerializer
    update_serializer_class = SectorUpdateSerializer


@_list_schema('Assets', AssetSerializer, parent='sector')
class AssetListView(EntityListView):
    """
    GET /v1/assets
    POST /v1/assets
    """

    model = Asset
    serializer_class = AssetSerializer

    def create(self, request, validated_data):
        sector = validated_data.pop('sector')
        tag = validated_data.pop('tag')
        return EntityService.create_asset(sector, tag, actor=request.user, request=request, **validated_data)


@_detail_schema('Assets', AssetSerializer, AssetUpdateSerializer)
class AssetDetailView(EntityDetailView):
    model = Asset
    serializer_class = AssetSerializer
    update_serializer_class = AssetUpdateSerializer
