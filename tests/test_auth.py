import bcrypt
import jwt
import pytest

from duochat.auth import AuthService, create_token, looks_like_bcrypt, make_hash, verify_hash
from duochat.errors import BadRequest, Conflict, NotFound, Unauthorized
from duochat.vault import Vault


@pytest.fixture
def auth(users, vault, settings):
    return AuthService(users, vault, settings)


def test_hash_round_trip():
    h = make_hash("hunter22")
    assert looks_like_bcrypt(h)
    assert verify_hash("hunter22", h)
    assert not verify_hash("hunter23", h)
    assert not verify_hash("hunter22", "not-a-hash")


def test_register_with_client_hash_then_login_with_plaintext(auth):
    client_hash = bcrypt.hashpw(b"pa55word!", bcrypt.gensalt()).decode()
    token = auth.register("u1", hashed_password=client_hash)

    assert auth.verify_token(token) == "u1"
    assert auth.verify_token(auth.login("u1", "pa55word!")) == "u1"
    with pytest.raises(Unauthorized):
        auth.login("u1", "wrong")


def test_register_requires_exactly_one_secret(auth):
    with pytest.raises(BadRequest):
        auth.register("u1")
    with pytest.raises(BadRequest):
        auth.register("u1", hashed_password=make_hash("longenough"), password="longenough")


def test_register_rejects_non_bcrypt_hash(auth):
    with pytest.raises(BadRequest):
        auth.register("u1", hashed_password="5f4dcc3b5aa765d61d8327deb882cf99")


def test_register_rejects_short_password(auth):
    with pytest.raises(BadRequest):
        auth.register("u1", password="short")


def test_duplicate_registration_conflicts(auth):
    auth.register("u1", password="longenough")
    with pytest.raises(Conflict):
        auth.register("u1", password="different1")


def test_placeholder_profile_can_be_claimed(auth, users):
    users.update_user("u1", lambda u: None, create=True)
    with pytest.raises(Unauthorized):
        auth.login("u1", "anything")

    auth.register("u1", password="longenough")
    assert auth.verify_token(auth.login("u1", "longenough")) == "u1"


def test_login_unknown_user(auth):
    with pytest.raises(NotFound):
        auth.login("nobody", "whatever1")


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
def test_verify_rejects_malformed_tokens(auth, token):
    with pytest.raises(Unauthorized):
        auth.verify_token(token)


def test_verify_rejects_foreign_signature(auth):
    token = create_token("u1", "some-other-secret-0123456789abcdef0123456789")
    with pytest.raises(Unauthorized):
        auth.verify_token(token)


def test_verify_rejects_expired_token(auth, vault, settings):
    secret = vault.get_secret(settings.jwt_secret_name, generate=True)
    token = create_token("u1", secret, ttl_hours=-1)
    with pytest.raises(Unauthorized):
        auth.verify_token(token)


def test_rotated_secret_is_refetched(auth, db, settings):
    old_token = auth.register("u1", password="longenough")
    # another process rotates the secret; this one still caches the old value
    Vault(db.vault, settings.vault_secret).put_secret(settings.jwt_secret_name, "rotated-secret-0123456789abcdef0123456789")

    new_token = create_token("u1", "rotated-secret-0123456789abcdef0123456789")
    assert auth.verify_token(new_token) == "u1"
    with pytest.raises(Unauthorized):
        auth.verify_token(old_token)


def test_token_claims(auth):
    token = auth.register("u1", password="longenough")
    claims = jwt.decode(token, options={"verify_signature": False})
    assert claims["sub"] == "u1"
    assert claims["exp"] > claims["iat"]
