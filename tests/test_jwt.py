from datetime import timedelta

from app.auth.jwt_handler import ROLE_ADMIN, ROLE_USER, JwtHandler, hash_token


def test_access_token_roundtrip(jwt):
    token = jwt.create_access_token("user-1", ROLE_USER)

    payload = jwt.decode_access_token(token)

    assert payload["sub"] == "user-1"
    assert payload["role"] == ROLE_USER
    assert payload["type"] == "access"


def test_extra_claims_are_kept(jwt):
    token = jwt.create_access_token("admin-1", ROLE_ADMIN, sid="abc")
    assert jwt.decode_access_token(token)["sid"] == "abc"


def test_expired_token_is_rejected(jwt):
    token = jwt.create_access_token("user-1", ROLE_USER, expires_delta=timedelta(seconds=-10))
    assert jwt.decode_access_token(token) is None


def test_token_signed_with_another_secret_is_rejected(jwt):
    other = JwtHandler("autre-secret")
    assert jwt.decode_access_token(other.create_access_token("user-1", ROLE_USER)) is None
    assert jwt.decode_access_token("pas.un.jwt") is None


def test_token_of_another_type_is_rejected(jwt):
    token = jwt.create_access_token("user-1", ROLE_USER, type="refresh")
    assert jwt.decode_access_token(token) is None


def test_hash_token_is_stable():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    assert len(hash_token("abc")) == 64
