import httpx

from wristpass.auth import RemoteAuth, StaticTokenAuth


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRemoteAuth:
    async def test_resolves_user_id(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers.get("authorization")
            seen["apikey"] = request.headers.get("apikey")
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "user-42"})

        async with _client(handler) as http:
            auth = RemoteAuth(http, "https://auth.example/", anon_key="anon")
            assert await auth.resolve("tok") == "user-42"
        assert seen == {"auth": "Bearer tok", "apikey": "anon",
                        "path": "/auth/v1/user"}

    async def test_rejected_token(self):
        async with _client(lambda req: httpx.Response(401)) as http:
            assert await RemoteAuth(http, "https://a").resolve("bad") is None

    async def test_unreachable_provider(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        async with _client(handler) as http:
            assert await RemoteAuth(http, "https://a").resolve("tok") is None


class TestStaticTokenAuth:
    async def test_from_env(self):
        auth = StaticTokenAuth.from_env(" a=user-a, b=user-b ,broken")
        assert await auth.resolve("a") == "user-a"
        assert await auth.resolve("b") == "user-b"
        assert await auth.resolve("broken") is None
        assert await auth.resolve("c") is None
