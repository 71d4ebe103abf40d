from auth import hash_password, pwd_context


def test_password_hash_verification() -> None:
    hashed = hash_password("demo123")
    assert hashed != "demo123"
    assert hashed.startswith("$2b$")
    assert pwd_context.verify("demo123", hashed)
    assert not pwd_context.verify("wrong", hashed)
