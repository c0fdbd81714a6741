import base64
import os
import sys
import unittest
from unittest import mock

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from jose import jwt
from jose.exceptions import JWTError

from app.auth import JwksCache, SupabaseAuthMiddleware, TokenVerifier


SECRET = base64.urlsafe_b64encode(b"routeshape-test-signing-secret-01").rstrip(b"=").decode("ascii")
KEY = {"kty": "oct", "kid": "k1", "alg": "HS256", "k": SECRET}


class _Fetcher:
    def __init__(self, keys):
        self.keys = keys
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        return {"keys": list(self.keys)}


class _StaticVerifier:
    issuer = "http://supabase.test/auth/v1"

    def claims(self, token):
        if token != "good":
            raise JWTError("Signature verification failed")
        return {"sub": "user-1", "email": "a@example.com"}


class TestJwksCache(unittest.TestCase):
    def test_keys_are_cached_within_ttl(self) -> None:
        fetch = _Fetcher([KEY])
        jwks = JwksCache("http://supabase.test/jwks", ttl=600, fetch=fetch)
        self.assertEqual(jwks.key_for("k1")["kid"], "k1")
        self.assertEqual(jwks.key_for("k1")["kid"], "k1")
        self.assertEqual(fetch.calls, 1)

    def test_expired_ttl_refetches(self) -> None:
        fetch = _Fetcher([KEY])
        jwks = JwksCache("http://supabase.test/jwks", ttl=0, fetch=fetch)
        jwks.key_for("k1")
        jwks.key_for("k1")
        self.assertEqual(fetch.calls, 2)

    def test_unknown_kid_refetch_is_rate_limited(self) -> None:
        fetch = _Fetcher([KEY])
        jwks = JwksCache("http://supabase.test/jwks", ttl=600, min_refresh=0, fetch=fetch)
        jwks.key_for("k1")
        fetch.keys = [KEY, dict(KEY, kid="k2")]
        self.assertEqual(jwks.key_for("k2")["kid"], "k2")
        self.assertEqual(fetch.calls, 2)

        jwks.min_refresh = 3600
        with self.assertRaises(JWTError):
            jwks.key_for("forged")
        self.assertEqual(fetch.calls, 2)


class TestTokenVerifier(unittest.TestCase):
    def setUp(self) -> None:
        jwks = JwksCache("http://supabase.test/jwks", ttl=600, fetch=_Fetcher([KEY]))
        self.verifier = TokenVerifier("http://supabase.test/", jwks=jwks)

    def _token(self, claims) -> str:
        return jwt.encode(claims, KEY, algorithm="HS256", headers={"kid": "k1"})

    def test_valid_token(self) -> None:
        claims = self.verifier.claims(self._token({"sub": "user-1", "iss": self.verifier.issuer}))
        self.assertEqual(claims["sub"], "user-1")

    def test_wrong_issuer(self) -> None:
        with self.assertRaises(JWTError):
            self.verifier.claims(self._token({"sub": "user-1", "iss": "http://elsewhere/auth/v1"}))

    def test_missing_subject(self) -> None:
        with self.assertRaises(JWTError):
            self.verifier.claims(self._token({"iss": self.verifier.issuer}))


class TestAuthMiddleware(unittest.TestCase):
    def setUp(self) -> None:
        app = FastAPI()

        @app.get("/manage/me")
        async def me(request: Request):
            return {"user": request.state.user["id"]}

        @app.get("/{project_slug}/{suffix:path}")
        async def resolve(project_slug: str, suffix: str):
            return {"slug": project_slug}

        app.add_middleware(SupabaseAuthMiddleware, supabase_url="http://supabase.test", verifier=_StaticVerifier())
        self.client = TestClient(app)
        patcher = mock.patch.dict(os.environ, {"ROUTESHAPE_DISABLE_AUTH": ""})
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_resolution_routes_need_no_token(self) -> None:
        res = self.client.get("/shop/items")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"slug": "shop"})

    def test_manage_requires_token(self) -> None:
        res = self.client.get("/manage/me")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_MISSING_TOKEN")

    def test_manage_rejects_bad_token(self) -> None:
        res = self.client.get("/manage/me", headers={"Authorization": "Bearer forged"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_INVALID_TOKEN")

    def test_manage_with_token(self) -> None:
        res = self.client.get("/manage/me", headers={"Authorization": "Bearer good"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"user": "user-1"})

    def test_local_origin_gets_cors_on_401(self) -> None:
        res = self.client.get("/manage/me", headers={"Origin": "http://localhost:5173"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.headers["access-control-allow-origin"], "http://localhost:5173")


if __name__ == "__main__":
    unittest.main()
