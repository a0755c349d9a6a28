"""Tests for click_id minting and verification."""

from soundlink.config import get_settings
from soundlink.core.click_id import ClickId, _sign, hash_ip, mint_click_id, verify_click_id


def test_mint_returns_valid_click_id():
    cid = mint_click_id()
    assert isinstance(cid, ClickId)
    assert cid.uid
    assert len(cid.signature) == 16


def test_minted_ids_are_unique():
    assert str(mint_click_id()) != str(mint_click_id())


def test_verify_accepts_minted_id():
    cid = mint_click_id()
    verified = verify_click_id(str(cid))
    assert verified == cid


def test_tampered_signature_rejected():
    cid = mint_click_id()
    assert verify_click_id(f"{cid.uid}:{'0' * 16}") is None


def test_tampered_uid_rejected():
    cid = mint_click_id()
    swapped = "1" if cid.uid.endswith("0") else "0"
    assert verify_click_id(f"{cid.uid[:-1]}{swapped}:{cid.signature}") is None


def test_signature_from_other_secret_rejected():
    cid = mint_click_id()
    forged = _sign(cid.uid, "some-other-secret")
    assert verify_click_id(f"{cid.uid}:{forged}") is None


def test_malformed_strings_rejected():
    assert verify_click_id("") is None
    assert verify_click_id("just-one-part") is None
    assert verify_click_id("a:") is None
    assert verify_click_id(":b") is None
    assert verify_click_id("a:b:c") is None


def test_click_id_str_format():
    parts = str(mint_click_id()).split(":")
    assert len(parts) == 2


def test_hash_ip_is_salted_and_stable():
    assert hash_ip("203.0.113.9") == hash_ip("203.0.113.9")
    assert hash_ip("203.0.113.9") != hash_ip("203.0.113.10")
    assert "203.0.113.9" not in hash_ip("203.0.113.9")
    assert get_settings().ip_hash_salt == "test-salt"
