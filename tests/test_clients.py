"""Platform client tests over httpx.MockTransport."""

import json

import httpx
import pytest

from shared.clients import DiscordWebhookChannel, TwitchHelixClient, XPostSender
from shared.errors import UpstreamError

THUMBNAIL = "https://static-cdn.jtvnw.net/previews-ttv/live_user_speedy-{width}x{height}.jpg"


# =============================================================================
# Twitch Helix
# =============================================================================


def _twitch_transport(streams_status=200, streams=None, calls=None):
    calls = calls if calls is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/oauth2/token":
            return httpx.Response(200, json={"access_token": "app-token", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer app-token"
        assert request.headers["Client-Id"] == "cid"
        return httpx.Response(streams_status, json={"data": streams or []})

    return httpx.MockTransport(handler)


def _stream(stream_id="9001", viewers=42):
    return {
        "id": stream_id,
        "user_id": "1001",
        "title": "Any% attempts",
        "viewer_count": viewers,
        "thumbnail_url": THUMBNAIL,
        "game_name": "Celeste",
    }


async def test_stream_details():
    client = TwitchHelixClient("cid", "secret", transport=_twitch_transport(streams=[_stream()]))
    details = await client.get_stream_details("1001")
    await client.close()

    assert details.title == "Any% attempts"
    assert details.viewer_count == 42
    assert details.thumbnail_url.endswith("live_user_speedy-1280x720.jpg")


async def test_viewer_count_for_tracked_session():
    client = TwitchHelixClient("cid", "secret", transport=_twitch_transport(streams=[_stream()]))

    assert await client.get_live_viewer_count("1001", "9001") == 42
    # A new session of the same broadcaster means the tracked one ended
    assert await client.get_live_viewer_count("1001", "1234") is None
    await client.close()


async def test_offline_is_none():
    client = TwitchHelixClient("cid", "secret", transport=_twitch_transport(streams=[]))
    assert await client.get_live_viewer_count("1001", "9001") is None
    await client.close()


async def test_app_token_is_reused():
    calls = []
    client = TwitchHelixClient(
        "cid", "secret", transport=_twitch_transport(streams=[_stream()], calls=calls)
    )
    await client.get_live_viewer_count("1001")
    await client.get_live_viewer_count("1001")
    await client.close()

    assert calls.count("/oauth2/token") == 1


@pytest.mark.parametrize("status", [429, 500, 503, 401])
async def test_upstream_errors_raise(status):
    client = TwitchHelixClient("cid", "secret", transport=_twitch_transport(streams_status=status))
    with pytest.raises(UpstreamError):
        await client.get_live_viewer_count("1001", "9001")
    await client.close()


async def test_transport_error_raises_upstream_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    client = TwitchHelixClient("cid", "secret", transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError):
        await client.get_live_viewer_count("1001")
    await client.close()


def test_missing_credentials():
    with pytest.raises(ValueError):
        TwitchHelixClient("", "")


# =============================================================================
# X
# =============================================================================


async def _token(owner_id):
    return "user-token" if owner_id == "owner-1" else None


async def test_x_send_posts_text_and_media():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "1790000000000000000", "text": "hi"}})

    sender = XPostSender(_token, api_base="https://api.x.test/2", transport=httpx.MockTransport(handler))
    result = await sender.send("owner-1", "Live now!", ["m1"])
    await sender.close()

    assert result.success
    assert result.external_post_id == "1790000000000000000"
    assert seen["auth"] == "Bearer user-token"
    assert seen["body"] == {"text": "Live now!", "media": {"media_ids": ["m1"]}}


async def test_x_send_reports_rejection():
    def handler(request):
        return httpx.Response(429, json={"detail": "Too Many Requests"})

    sender = XPostSender(_token, transport=httpx.MockTransport(handler))
    result = await sender.send("owner-1", "Live now!")
    await sender.close()

    assert not result.success
    assert result.error == "Too Many Requests"


async def test_x_send_without_token():
    sender = XPostSender(_token, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    result = await sender.send("nobody", "Live now!")
    await sender.close()

    assert result.error == "X account not connected"


async def test_x_media_only_from_cdn():
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(500)

    sender = XPostSender(_token, transport=httpx.MockTransport(handler))
    assert await sender.upload_media("owner-1", "https://evil.example/img.jpg") is None
    await sender.close()
    assert requested == []


async def test_x_media_upload():
    def handler(request):
        if request.url.host == "static-cdn.jtvnw.net":
            return httpx.Response(200, content=b"\xff\xd8jpeg")
        return httpx.Response(200, json={"data": {"id": "media-77"}})

    sender = XPostSender(_token, transport=httpx.MockTransport(handler))
    media_id = await sender.upload_media(
        "owner-1", "https://static-cdn.jtvnw.net/previews-ttv/live_user_speedy-1280x720.jpg"
    )
    await sender.close()
    assert media_id == "media-77"


# =============================================================================
# Discord webhook
# =============================================================================


async def test_discord_webhook_embed():
    seen = {}

    def handler(request):
        seen["wait"] = request.url.params.get("wait")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "discord-msg-1"})

    channel = DiscordWebhookChannel(transport=httpx.MockTransport(handler))
    result = await channel.send(
        "https://discord.com/api/webhooks/1/abc",
        "Live now!",
        title="Any%",
        url="https://cue.example/l/abcd1234",
    )
    await channel.close()

    assert result.success
    assert result.external_post_id == "discord-msg-1"
    assert seen["wait"] == "true"
    embed = seen["body"]["embeds"][0]
    assert embed["title"] == "Any%"
    assert embed["url"] == "https://cue.example/l/abcd1234"


async def test_discord_webhook_failure():
    channel = DiscordWebhookChannel(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    result = await channel.send("https://discord.com/api/webhooks/1/abc", "Live now!")
    await channel.close()

    assert not result.success
    assert "404" in result.error
