import httpx
import pytest

CDN = "d123.cloudfront.net"


def cdn(existing: set[str]):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == CDN
        if request.url.path.lstrip("/") in existing:
            return httpx.Response(206, content=b"ID")
        return httpx.Response(404)

    return handler


class TestCfProbe:
    @pytest.mark.asyncio
    async def test_reports_found_renders(self, client, upstream):
        upstream.handler = cdn({"jobs/abc/mastered/mix_v1.mp3", "jobs/abc/mix.mp3"})

        response = await client.get("/api/cf-probe", params={"key": "jobs/abc/mix.wav", "ext": "mp3,wav"})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert response.json() == {
            "success": True,
            "mastered": True,
            "urls": [f"https://{CDN}/jobs/abc/mastered/mix_v1.mp3", f"https://{CDN}/jobs/abc/mix.mp3"],
        }
        assert all(r.headers["range"] == "bytes=0-1" for r in upstream.requests)

    @pytest.mark.asyncio
    async def test_nothing_there_yet(self, client, upstream):
        upstream.handler = cdn(set())

        response = await client.get("/api/cf-probe", params={"key": "jobs/abc/mix.wav", "ext": "mp3"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "mastered": False, "urls": []}

    @pytest.mark.asyncio
    async def test_caps_hits(self, client, upstream, settings):
        settings.probe_max_hits = 2
        upstream.handler = cdn({f"jobs/abc/mix_v{i}.mp3" for i in range(1, 6)})

        response = await client.get("/api/cf-probe", params={"key": "jobs/abc/mix.wav", "ext": "mp3"})

        assert response.json()["urls"] == [f"https://{CDN}/jobs/abc/mix_v1.mp3", f"https://{CDN}/jobs/abc/mix_v2.mp3"]

    @pytest.mark.asyncio
    async def test_missing_key(self, client, upstream):
        response = await client.get("/api/cf-probe")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing key"}
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_missing_cdn_config(self, client, upstream, settings):
        settings.cdn_url = None

        response = await client.get("/api/cf-probe", params={"key": "jobs/abc/mix.wav"})

        assert response.status_code == 500
        assert response.json() == {"error": "Missing MASTERING_CLOUDFRONT_URL"}
