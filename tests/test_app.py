from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from app import app, get_cache, get_monitor, get_refresher, get_store, get_user_id
from errors import ChannelNotFound, InvalidChannelReference, RateLimited
from refresher import ChannelRefresher
from schemas import ChannelStats, LatestVideosResult, SnapshotCounts

CHANNEL = "UC" + "s" * 22


class FakeMonitor:
    def __init__(self, make_video):
        self.make_video = make_video
        self.known = {CHANNEL: 1000}

    def resolve_channel_reference(self, raw):
        if raw.strip() in self.known:
            return raw.strip()
        if raw.startswith("@"):
            raise ChannelNotFound(raw)
        raise InvalidChannelReference(f"Invalid channel URL, username or ID: {raw}")

    def fetch_channel_stats(self, channel_id):
        return ChannelStats(channel_id=channel_id, title="Story Time", subscriber_count=self.known[channel_id],
                            view_count=100000, video_count=20)

    def fetch_latest_videos(self, channel_id, max_results=5):
        return LatestVideosResult(channel_id=channel_id,
                                  videos=[self.make_video(f"v{i}", views=1000 * i) for i in range(max_results)])

    def search(self, *args, **kwargs):
        raise RateLimited("All API keys exhausted")

    def get_quota_status(self):
        return [{"index": 0, "quota_used": 12}]


@pytest.fixture
def monitor(make_video):
    return FakeMonitor(make_video)


@pytest.fixture
def client(store, cache, monitor):
    def fast_refresher(user_id: str = Depends(get_user_id)):
        return ChannelRefresher(store, monitor, cache, user_id=user_id, delay_seconds=0)

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_monitor] = lambda: monitor
    app.dependency_overrides[get_refresher] = fast_refresher
    yield TestClient(app)
    app.dependency_overrides.clear()


def add(client, channel_input=CHANNEL, **extra):
    return client.post("/channels", json={"channel_input": channel_input, **extra})


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_add_channel_then_conflict(client):
    response = add(client, niche="Stories")

    assert response.status_code == 201
    body = response.json()
    assert body["channel"]["current_subscribers"] == 1000
    assert body["growth"]["total_subs_gained"] == 0
    assert body["growth"]["is_exploding"] is False

    assert add(client).status_code == 409


@pytest.mark.parametrize("channel_input, status", [
    ("not a channel!", 400),
    ("@nobody", 404),
])
def test_add_channel_errors(client, channel_input, status):
    response = add(client, channel_input)

    assert response.status_code == status
    assert "error" in response.json()


def test_unknown_channel_is_404(client):
    assert client.get(f"/channels/{CHANNEL}").status_code == 404
    assert client.get(f"/channels/{CHANNEL}/history").status_code == 404
    assert client.delete(f"/channels/{CHANNEL}").status_code == 404


def test_channels_are_scoped_by_user_header(client):
    add(client)

    assert len(client.get("/channels").json()) == 1
    assert client.get("/channels", headers={"X-User-Id": "someone-else"}).json() == []


def test_growth_reported_for_exploding_channel(client, store):
    six_days_ago = datetime.now(timezone.utc) - timedelta(days=6)
    store.add_channel("local", ChannelStats(channel_id=CHANNEL, title="Story Time", subscriber_count=1000),
                      now=six_days_ago)
    counts = SnapshotCounts(subscriber_count=1200)
    store.upsert_today_snapshot(CHANNEL, "local", counts, now=six_days_ago + timedelta(days=5))
    store.update_monitored_channel(CHANNEL, "local", counts)

    growth = client.get(f"/channels/{CHANNEL}").json()["growth"]

    assert growth["subs_last_7_days"] == 200
    assert growth["is_exploding"] is True
    assert len(client.get(f"/channels/{CHANNEL}/history").json()) == 2


def test_refresh_then_recent_videos(client):
    add(client)

    result = client.post("/refresh", json={"force_update": True}).json()
    assert (result["total"], result["success"], result["failed"]) == (1, 1, 0)

    [row] = client.get("/videos/recent").json()
    assert row["channel"]["channel_id"] == CHANNEL
    assert [video["position"] for video in row["videos"]] == [1, 2, 3, 4, 5]

    videos = client.get(f"/channels/{CHANNEL}/videos").json()
    assert videos["summary"]["video_count"] == 5

    assert client.get("/cache").json()["channels"] == 1
    client.delete("/cache")
    assert client.get("/cache").json()["channels"] == 0


def test_refresh_of_unmonitored_channel_reports_error(client):
    result = client.post("/refresh", json={"channel_ids": [CHANNEL]}).json()

    assert result["failed"] == 1
    assert result["errors"][0]["channel_id"] == CHANNEL


def test_update_and_delete_channel(client):
    add(client)

    updated = client.patch(f"/channels/{CHANNEL}", json={"niche": "Gaming", "content_type": "shorts"}).json()
    assert (updated["niche"], updated["content_type"]) == ("Gaming", "shorts")
    assert client.get("/niches").json() == ["Gaming"]

    assert client.delete(f"/channels/{CHANNEL}").status_code == 200
    assert client.get("/channels").json() == []


def test_rename_niche(client):
    add(client, niche="gaming")

    response = client.post("/niches/rename", json={"old_niche": "Gaming", "new_niche": "Games"})

    assert response.json()["renamed"] == 1
    assert client.get("/niches").json() == ["Games"]
    assert client.post("/niches/rename", json={"old_niche": "Games", "new_niche": " "}).status_code == 400


def test_search_rate_limited_is_429(client):
    assert client.get("/search", params={"q": "stories"}).status_code == 429


def test_quota_status(client):
    assert client.get("/quota").json()[0]["quota_used"] == 12


def test_dashboard(client, store):
    add(client)
    six_days_ago = datetime.now(timezone.utc) - timedelta(days=6)
    other = "UC" + "t" * 22
    store.add_channel("local", ChannelStats(channel_id=other, title="Quick Clips", subscriber_count=100, view_count=1000),
                      content_type="shorts", now=six_days_ago)
    store.update_monitored_channel(other, "local", SnapshotCounts(subscriber_count=500, view_count=9000))

    summary = client.get("/dashboard").json()

    assert summary["total_channels"] == 2
    assert summary["exploding_channels"] == 1
    assert [item["channel"]["channel_id"] for item in summary["top_shorts"]] == [other]
    assert summary["top_shorts"][0]["growth"]["views_last_7_days"] == 8000
    assert [item["channel"]["channel_id"] for item in summary["top_longform"]] == [CHANNEL]
