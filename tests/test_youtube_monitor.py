import json
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError
from httplib2 import Response

from errors import ChannelNotFound, InvalidChannelReference, RateLimited
from youtube_monitor import YouTubeMonitor, uploads_playlist_id

CHANNEL = "UC" + "x" * 22


def http_error(status, message="error"):
    content = json.dumps({"error": {"code": status, "message": message}}).encode()
    return HttpError(Response({"status": status}), content)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def monitor(session_factory, client):
    return YouTubeMonitor(api_keys=["key-aaaaaa"], session_factory=session_factory, client_factory=lambda key: client)


def channel_response(channel_id=CHANNEL, subscribers="1500"):
    return {"items": [{
        "id": channel_id,
        "snippet": {"title": "Story Time", "thumbnails": {"high": {"url": "http://img/high.jpg"}}},
        "statistics": {"subscriberCount": subscribers, "viewCount": "90000", "videoCount": "42"},
    }]}


def test_uploads_playlist_id():
    assert uploads_playlist_id(CHANNEL) == "UU" + "x" * 22
    with pytest.raises(InvalidChannelReference):
        uploads_playlist_id("HC123")


def test_fetch_channel_stats_tracks_quota(monitor, client):
    client.channels.return_value.list.return_value.execute.return_value = channel_response()

    stats = monitor.fetch_channel_stats(CHANNEL)

    assert stats.subscriber_count == 1500
    assert stats.video_count == 42
    assert stats.thumbnail_url == "http://img/high.jpg"
    assert monitor.get_quota_status()[0]["quota_used"] == 1


def test_fetch_channel_stats_unknown_channel(monitor, client):
    client.channels.return_value.list.return_value.execute.return_value = {"items": []}

    with pytest.raises(ChannelNotFound):
        monitor.fetch_channel_stats(CHANNEL)


def test_quota_error_with_single_key_is_rate_limited(monitor, client):
    client.channels.return_value.list.return_value.execute.side_effect = http_error(403, "quotaExceeded")

    with pytest.raises(RateLimited):
        monitor.fetch_channel_stats(CHANNEL)


def test_quota_error_rotates_to_next_key(session_factory):
    exhausted, fresh = MagicMock(), MagicMock()
    exhausted.channels.return_value.list.return_value.execute.side_effect = http_error(403, "quotaExceeded")
    fresh.channels.return_value.list.return_value.execute.return_value = channel_response()
    clients = {"key-aaaaaa": exhausted, "key-bbbbbb": fresh}
    monitor = YouTubeMonitor(api_keys=list(clients), session_factory=session_factory,
                             client_factory=clients.__getitem__)

    stats = monitor.fetch_channel_stats(CHANNEL)

    assert stats.channel_id == CHANNEL
    assert monitor.current_key_index == 1


def playlist_item(video_id, title="Upload"):
    return {
        "snippet": {"title": title, "thumbnails": {"default": {"url": f"http://img/{video_id}.jpg"}}},
        "contentDetails": {"videoId": video_id, "videoPublishedAt": "2024-06-10T10:00:00Z"},
    }


def video_stats(video_id, views, privacy="public"):
    return {"id": video_id, "statistics": {"viewCount": str(views)}, "status": {"privacyStatus": privacy}}


def test_fetch_latest_videos_flags_removed_uploads(monitor, client):
    client.playlistItems.return_value.list.return_value.execute.return_value = {"items": [
        playlist_item("v1"), playlist_item("v2", "Private video"), playlist_item("v3"), playlist_item("v4"),
    ]}
    client.videos.return_value.list.return_value.execute.return_value = {"items": [
        video_stats("v1", 100), video_stats("v3", 300, privacy="unlisted"), video_stats("v4", 400),
    ]}

    result = monitor.fetch_latest_videos(CHANNEL, max_results=5)

    assert result.channel_deleted is False
    assert [video.video_id for video in result.videos] == ["v1", "v2", "v3", "v4"]
    assert [bool(video.is_deleted) for video in result.videos] == [False, True, True, False]
    assert result.videos[1].title.startswith("[DELETED]")
    assert result.videos[0].view_count == 100


def test_fetch_latest_videos_missing_playlist_means_deleted_channel(monitor, client):
    client.playlistItems.return_value.list.return_value.execute.side_effect = http_error(404, "playlistNotFound")

    result = monitor.fetch_latest_videos(CHANNEL)

    assert result.channel_deleted is True
    assert result.videos == []


def test_resolve_channel_id_and_url_without_api_calls(monitor, client):
    assert monitor.resolve_channel_reference(f"  {CHANNEL} ") == CHANNEL
    assert monitor.resolve_channel_reference(f"https://www.youtube.com/channel/{CHANNEL}?view=0") == CHANNEL
    client.channels.assert_not_called()


def test_resolve_handle(monitor, client):
    client.channels.return_value.list.return_value.execute.return_value = {"items": [{"id": CHANNEL}]}

    assert monitor.resolve_channel_reference("https://youtube.com/@storytime") == CHANNEL


def test_resolve_unknown_name(monitor, client):
    client.channels.return_value.list.return_value.execute.return_value = {"items": []}

    with pytest.raises(ChannelNotFound):
        monitor.resolve_channel_reference("nobodyhere")


@pytest.mark.parametrize("raw", ["", "   ", "https://www.youtube.com/channel/short", "not a channel!"])
def test_resolve_rejects_malformed_input(monitor, client, raw):
    with pytest.raises(InvalidChannelReference):
        monitor.resolve_channel_reference(raw)
    client.channels.assert_not_called()


def test_search_joins_statistics(monitor, client):
    client.search.return_value.list.return_value.execute.return_value = {"items": [{
        "id": {"kind": "youtube#video", "videoId": "v1"},
        "snippet": {"title": "Found", "channelId": CHANNEL, "channelTitle": "Story Time",
                    "publishedAt": "2024-06-01T00:00:00Z"},
    }]}
    client.videos.return_value.list.return_value.execute.return_value = {"items": [
        {"id": "v1", "statistics": {"viewCount": "777"}, "contentDetails": {"duration": "PT5M"}},
    ]}
    client.channels.return_value.list.return_value.execute.return_value = {"items": [
        {"id": CHANNEL, "statistics": {"subscriberCount": "1000"}},
    ]}

    [result] = monitor.search("stories", max_results=10)

    assert (result.type, result.view_count, result.subscriber_count, result.duration) == ("video", 777, 1000, "PT5M")
    assert monitor.get_quota_status()[0]["quota_used"] == 102
