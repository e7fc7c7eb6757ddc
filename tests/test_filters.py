from datetime import timedelta

import pytest

from filters import FilterOptions, apply_filters, filter_videos_by_period, sort_channel_data, total_views_for_period
from schemas import ChannelVideoData, GrowthMetrics


@pytest.fixture
def rows(make_channel, make_video, now):
    def row(n, name, niche, content_type, subscribers, subs_7d, videos, added_days_ago):
        return ChannelVideoData(
            channel=make_channel(f"UC{n:022d}", subscribers=subscribers, niche=niche, content_type=content_type,
                                 display_name=name, added_at=now - timedelta(days=added_days_ago)),
            videos=videos,
            growth=GrowthMetrics(subs_last_7_days=subs_7d),
        )

    return [
        row(1, "beta Stories", "Gaming", "longform", 5000, 10, [make_video("a", views=100, days_ago=2)], 3),
        row(2, "Alpha Reads", "gaming ", "shorts", 900, 300, [make_video("b", views=900, days_ago=20)], 1),
        row(3, "Ñandu", "Music", "longform", 20000, 50, [make_video("c", views=5000, days_ago=40)], 7),
    ]


def names(result):
    return [data.channel.display_name for data in result]


def test_default_sort_is_alphabetic(rows):
    assert names(apply_filters(rows)) == ["Alpha Reads", "beta Stories", "Ñandu"]


def test_search_matches_name_id_and_niche(rows):
    assert names(apply_filters(rows, FilterOptions(search="STORIES"))) == ["beta Stories"]
    assert names(apply_filters(rows, FilterOptions(search="music"))) == ["Ñandu"]
    assert names(apply_filters(rows, FilterOptions(search="0000002"))) == ["Alpha Reads"]


@pytest.mark.parametrize("category", ["Todos", "all", "ALL", ""])
def test_all_category_bypasses_niche_filter(rows, category):
    assert len(apply_filters(rows, FilterOptions(category=category))) == 3


def test_niche_filter_ignores_case_and_whitespace(rows):
    assert names(apply_filters(rows, FilterOptions(category="GAMING"))) == ["Alpha Reads", "beta Stories"]


def test_content_type_filter(rows):
    assert names(apply_filters(rows, FilterOptions(content_type="shorts"))) == ["Alpha Reads"]


def test_sort_orders(rows, now):
    assert names(sort_channel_data(rows, "recent", now=now)) == ["Alpha Reads", "beta Stories", "Ñandu"]
    assert names(sort_channel_data(rows, "subscribers")) == ["Ñandu", "beta Stories", "Alpha Reads"]
    assert names(sort_channel_data(rows, "growth")) == ["Alpha Reads", "Ñandu", "beta Stories"]
    assert names(sort_channel_data(rows, "totalViews", "all", now)) == ["Ñandu", "Alpha Reads", "beta Stories"]
    assert names(sort_channel_data(rows, "totalViews", "7days", now)) == ["beta Stories", "Alpha Reads", "Ñandu"]


def test_sort_is_stable_and_does_not_mutate(rows):
    original = list(rows)
    tied = [row.model_copy(update={"growth": GrowthMetrics()}) for row in rows]

    assert sort_channel_data(tied, "growth") == tied
    assert rows == original


def test_period_filters(make_video, now):
    videos = [make_video("new", views=10, days_ago=1), make_video("month", views=20, days_ago=25),
              make_video("old", views=30, days_ago=45)]

    assert [v.video_id for v in filter_videos_by_period(videos, "7days", now)] == ["new"]
    assert total_views_for_period(videos, "30days", now) == 30
    assert total_views_for_period(videos, "all", now) == 60
