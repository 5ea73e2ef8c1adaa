"""Tests for the management CLI and token helpers."""

import pytest

from permengine.auth.jwt import bearer_token, create_access_token, decode_token, identity_ref_from_claims
from permengine.cli import main


@pytest.mark.unit
class TestCli:
    def test_catalog(self, capsys):
        assert main(["catalog"]) == 0
        out = capsys.readouterr().out
        assert "inventory" in out
        assert "  maxDiscountPercent (limit)" in out

    def test_routes(self, capsys):
        assert main(["routes"]) == 0
        out = capsys.readouterr().out
        assert "POST /api/inventory/products/add-stock" in out
        assert "inventory.canManageStock" in out

    def test_usage(self, capsys):
        assert main(["check", "only-one-arg"]) == 64
        assert "Usage" in capsys.readouterr().out

    def test_check_unknown_capability(self, capsys):
        assert main(["check", "u-1", "inventory.canFly"]) == 3
        assert "CONFIGURATION ERROR" in capsys.readouterr().out


@pytest.mark.unit
class TestTokens:
    def test_round_trip(self, test_settings):
        token = create_access_token("staff-1", settings=test_settings)
        assert identity_ref_from_claims(decode_token(token, test_settings)) == "staff-1"

    def test_wrong_secret(self, test_settings):
        token = create_access_token("staff-1", settings=test_settings)
        assert decode_token(token) == {}

    def test_only_access_tokens_identify(self):
        assert identity_ref_from_claims({"sub": "staff-1", "type": "refresh"}) is None
        assert identity_ref_from_claims({"sub": "staff-1", "type": "access"}) == "staff-1"
        assert identity_ref_from_claims({"userId": "staff-1"}) == "staff-1"


    def test_bearer_token(self):
        assert bearer_token("Bearer abc") == "abc"
        assert bearer_token("bearer abc") == "abc"
        assert bearer_token("Basic abc") is None
        assert bearer_token("Bearer ") is None
        assert bearer_token(None) is None
