"""
Property-based tests for the permission name codec.

Property: every name built from the enums formats to a string that parses
back to the same value, and arbitrary text never raises.
"""
from hypothesis import given, strategies as st, settings

from apps.rbac.permission_names import (
    Action, PermissionName, Resource, ScopeType, parse,
)


entity_ids = st.integers(min_value=1, max_value=10 ** 12)


@st.composite
def scoped_names(draw):
    return PermissionName.scoped(
        draw(st.sampled_from(list(Resource))),
        draw(st.sampled_from(list(Action))),
        draw(st.sampled_from(list(ScopeType))),
        draw(entity_ids),
    )


@st.composite
def single_id_names(draw):
    return PermissionName.for_entity(
        draw(st.sampled_from(list(Resource))),
        draw(st.sampled_from(list(Action))),
        draw(entity_ids),
    )


@st.composite
def system_names(draw):
    return PermissionName.system(
        draw(st.sampled_from(list(Action))),
        draw(st.sampled_from(list(Resource))),
    )


class TestPermissionNameProperties:

    @given(name=st.one_of(scoped_names(), single_id_names(), system_names()))
    @settings(max_examples=200, deadline=None)
    def test_formatted_names_parse_back(self, name):
        """
        Property: parse(str(name)) == name for every well-formed name.
        """
        assert parse(str(name)) == name

    @given(text=st.text(max_size=60))
    @settings(max_examples=300, deadline=None)
    def test_arbitrary_text_never_raises(self, text):
        """
        Property: parse() returns None or a PermissionName, never raises.
        """
        result = parse(text)
        assert result is None or isinstance(result, PermissionName)

    @given(
        name=scoped_names(),
        junk=st.sampled_from(['0', '-3', '01', 'x', '', '1.5'])
    )
    @settings(max_examples=100, deadline=None)
    def test_bad_ids_are_rejected(self, name, junk):
        """
        Property: replacing the id with a non-positive or non-numeric token
        makes the name invalid.
        """
        prefix = str(name).rsplit('.', 1)[0]
        assert parse(f'{prefix}.{junk}') is None
