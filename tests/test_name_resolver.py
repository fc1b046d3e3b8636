"""
Tests for best-effort name resolution.
"""

from unittest.mock import Mock

from pim_engine.connectors import ConnectorResult, NameResolver


def test_successful_lookup_is_cached():
    """Test that a resolved name is cached."""
    client = Mock()
    client.get_user_name.return_value = ConnectorResult(True, data="Alex Admin")
    resolver = NameResolver(client)

    assert resolver.resolve_user_name("u1") == "Alex Admin"
    assert resolver.resolve_user_name("u1") == "Alex Admin"
    client.get_user_name.assert_called_once_with("u1")


def test_failed_lookup_uses_fallback():
    """Test that a failed lookup returns the fallback."""
    client = Mock()
    client.get_group_name.return_value = ConnectorResult(False, "Group g1 not found", status_code=404)
    resolver = NameResolver(client)

    assert resolver.resolve_group_name("g1") == "g1"
    assert resolver.resolve_group_name("g1", fallback="(unknown)") == "(unknown)"
    client.get_group_name.assert_called_once()


def test_lookup_errors_never_raise():
    """Test that lookup exceptions are not raised."""
    client = Mock()
    client.get_role_name.side_effect = RuntimeError("timeout")

    assert NameResolver(client).resolve_role_name("r1") == "r1"


def test_missing_id_skips_lookup():
    """Test that an empty id is not looked up."""
    client = Mock()

    assert NameResolver(client).resolve_user_name(None, fallback="(unknown)") == "(unknown)"
    client.get_user_name.assert_not_called()
