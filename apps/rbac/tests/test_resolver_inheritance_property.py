"""
Property-based tests for grant inheritance.

Property: a single grant authorizes an action on an asset exactly when the
grant is anchored at the asset or one of its ancestors and its action is
the requested one or subsumes it. Visibility adds one case: any grant on
the asset itself lets the user view it.
"""
import pytest
from hypothesis import given, strategies as st, settings, HealthCheck

from apps.rbac.permission_names import Action, subsuming_actions
from apps.rbac.resolver import AuthorizationResolver


ENTITY_KEYS = [
    'plant', 'area', 'sector', 'asset', 'asset2',
    'other_plant', 'other_area', 'other_sector', 'other_asset',
]

# Asset actions the catalog generates per anchor type
SCOPED_ASSET_ACTIONS = ['viewAny', 'create', 'manage', 'execute-routines', 'export']
SELF_ASSET_ACTIONS = ['view', 'update', 'delete', 'manage', 'execute-routines']

REQUESTED_ACTIONS = ['view', 'update', 'delete', 'execute-routines']


@st.composite
def asset_grants(draw):
    """(anchor key, action) of a catalog permission that concerns assets."""
    key = draw(st.sampled_from(ENTITY_KEYS))
    if 'asset' in key:
        return key, draw(st.sampled_from(SELF_ASSET_ACTIONS))
    return key, draw(st.sampled_from(SCOPED_ASSET_ACTIONS))


def grant_name(entity, action):
    if entity.entity_type == 'asset':
        return f'assets.{action}.{entity.id}'
    return f'assets.{action}.{entity.entity_type}.{entity.id}'


def is_ancestor_or_self(anchor, asset):
    return {
        'plant': asset.plant_id,
        'area': asset.area_id,
        'sector': asset.sector_id,
        'asset': asset.id,
    }[anchor.entity_type] == anchor.id


@pytest.mark.django_db
class TestInheritanceProperty:

    @given(
        grant_spec=asset_grants(),
        target_key=st.sampled_from(['asset', 'asset2', 'other_asset']),
        requested=st.sampled_from(REQUESTED_ACTIONS),
    )
    @settings(
        max_examples=150,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_single_grant_inheritance(self, hierarchy, make_user, grant, grant_spec, target_key, requested):
        """
        Property: can(user, requested, asset) follows ancestry and subsumption.
        """
        anchor_key, granted = grant_spec
        anchor, asset = hierarchy[anchor_key], hierarchy[target_key]
        user = make_user()
        grant(user, grant_name(anchor, granted))

        covers = is_ancestor_or_self(anchor, asset)
        expected = covers and Action(granted) in subsuming_actions(Action(requested))
        if requested == 'view' and anchor.pk == asset.pk and anchor.entity_type == 'asset':
            expected = True

        assert AuthorizationResolver.can(user, requested, asset) == expected

    @given(grant_spec=asset_grants())
    @settings(
        max_examples=60,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_grants_never_cross_plants(self, hierarchy, make_user, grant, grant_spec):
        """
        Property: a grant inside one plant never authorizes anything in the other.
        """
        anchor_key, granted = grant_spec
        anchor = hierarchy[anchor_key]
        user = make_user()
        grant(user, grant_name(anchor, granted))

        foreign = 'other_asset' if not anchor_key.startswith('other_') else 'asset'
        for action in REQUESTED_ACTIONS:
            assert not AuthorizationResolver.can(user, action, hierarchy[foreign])
