"""Attach social-listening trends and their viral posts to generation runs."""

from __future__ import annotations

import logging

from topicgen.models import SocialPost, TrendingContext, ViralPost
from topicgen.store import JsonStore

logger = logging.getLogger(__name__)

VIRAL_POOL_SIZE = 50


def _matches(post: SocialPost, needle: str) -> bool:
    if needle in post.content.lower():
        return True
    return any(needle in tag.lower() for tag in post.hashtags)


def build_trending_context(
    store: JsonStore,
    project_id: str,
    user_id: str | None = None,
    max_trends: int = 5,
    posts_per_trend: int = 3,
) -> list[TrendingContext]:
    """Best-effort trend context; any failure yields an empty list."""
    try:
        trends = store.list_watched_trends(project_id, user_id=user_id)
        if not trends:
            return []
        pool = store.top_social_posts(limit=VIRAL_POOL_SIZE)

        contexts = []
        for trend in trends[:max_trends]:
            needle = trend.query.lstrip("#").lower()
            matched = [p for p in pool if _matches(p, needle)][:posts_per_trend]
            contexts.append(
                TrendingContext(
                    trend_query=trend.query,
                    platforms=trend.platforms,
                    viral_posts=[
                        ViralPost(
                            platform=p.platform,
                            content=p.content,
                            engagement_score=p.engagement_score,
                            post_url=p.post_url,
                        )
                        for p in matched
                    ],
                )
            )
        return contexts
    except Exception:
        logger.warning(
            "Failed to build trending context for project %s", project_id, exc_info=True
        )
        return []
