"""LLM prompts for clustering, proposal synthesis, and citation finding."""

from __future__ import annotations

import math

from topicgen.models import (
    AudienceProfile,
    DepthPreference,
    ResearchSuggestion,
    ResearchType,
    SourceItem,
    Tone,
    TopicCluster,
    TrendingContext,
)

CLUSTER_SYSTEM_PROMPT = """You are a news analyst who finds thematic connections between news stories to create compelling video content topics.

Your task:
1. Group related stories by underlying themes, not just surface topics
2. Identify the bigger picture that connects multiple stories
3. Find patterns that would make compelling educational content
4. Weigh the target audience's values, fears, and interests when scoring relevance
5. Prefer themes that are timely and connect several stories

Return ONLY valid JSON matching the exact structure specified."""

PROPOSAL_SYSTEM_PROMPT = """You are a content strategist creating topic proposals for short explainer videos.

Your approach:
- Create titles that spark curiosity
- Write hooks that immediately connect to the viewer's specific concerns
- Structure talking points to fit the requested duration
- Frame everything through the target audience's values and fears
- Keep each talking point self-contained while building a coherent narrative

Return ONLY valid JSON matching the exact structure specified."""

RESEARCH_SYSTEM_PROMPT = """You are a research assistant finding credible sources for news video content.

Suggest real, verifiable sources that support the given topic. Focus on:
1. Official government statistics and reports
2. Peer-reviewed research from reputable institutions
3. Expert opinions from recognized authorities
4. Recent articles from credible news outlets

For each suggestion give a specific source title, its URL, a relevant excerpt, and why the source matters to the target audience.

Return ONLY valid JSON."""

_TONE_INSTRUCTIONS: dict[Tone, str] = {
    Tone.INVESTIGATIVE: (
        "Create a title that CHALLENGES the mainstream narrative. Use phrases like "
        '"The truth about...", "What they\'re not telling you about...", '
        "or pose a provocative question."
    ),
    Tone.EDUCATIONAL: (
        "Create a title that EXPLAINS and TEACHES. Use phrases like "
        '"Understanding...", "What you need to know about...", or "The science behind..."'
    ),
    Tone.PROVOCATIVE: (
        "Create a BOLD, attention-grabbing title. Make a surprising claim or ask "
        "a shocking question that demands attention."
    ),
    Tone.CONVERSATIONAL: (
        'Create a RELATABLE title in question format. Start with "Have you noticed...", '
        '"Why do we...", or address the audience directly.'
    ),
    Tone.BALANCED: (
        "Create a NEUTRAL, factual title that presents the topic objectively "
        "without strong bias."
    ),
}

_DETAIL_LEVELS: dict[DepthPreference, str] = {
    DepthPreference.SURFACE: (
        "Keep supporting details brief (1-2 sentences). Focus on key takeaways only."
    ),
    DepthPreference.DEEP_DIVE: (
        "Provide comprehensive supporting details (3-5 sentences) with specific "
        "examples, data points, and citations."
    ),
    DepthPreference.MEDIUM: (
        "Provide moderate supporting details (2-3 sentences) with relevant examples."
    ),
}

_RESEARCH_ASKS: dict[ResearchType, str] = {
    ResearchType.STATISTIC: "statistical data or official reports",
    ResearchType.STUDY: "research studies or academic papers",
    ResearchType.EXPERT_OPINION: "expert quotes or opinion pieces",
}

SENSITIVITY_THRESHOLD = 7


def tone_instructions(tone: Tone | None) -> str:
    """Title guidance for a tone. Unknown or missing tone reads as balanced."""
    return _TONE_INSTRUCTIONS.get(tone or Tone.BALANCED, _TONE_INSTRUCTIONS[Tone.BALANCED])


def talking_point_count(depth: DepthPreference | None, duration_seconds: int) -> int:
    if depth == DepthPreference.SURFACE:
        return 2
    if depth == DepthPreference.DEEP_DIVE:
        return min(5, math.ceil(duration_seconds / 90))
    return min(4, math.ceil(duration_seconds / 60))


def detail_level(depth: DepthPreference | None) -> str:
    return _DETAIL_LEVELS.get(depth or DepthPreference.MEDIUM, _DETAIL_LEVELS[DepthPreference.MEDIUM])


def build_audience_context(profile: AudienceProfile) -> str:
    """Render an audience profile as prompt lines, skipping empty fields."""
    sections = [f"TARGET AUDIENCE: {profile.name}"]

    demographics = []
    if profile.age_range:
        demographics.append(f"Age: {profile.age_range}")
    if profile.location:
        demographics.append(f"Location: {profile.location}")
    if profile.education_level:
        demographics.append(f"Education: {profile.education_level}")
    if demographics:
        sections.append(f"Demographics: {', '.join(demographics)}")

    market = []
    if profile.primary_language:
        market.append(f"Language: {profile.primary_language}")
    if profile.market_region:
        market.append(f"Market: {profile.market_region}")
    if profile.platform_type:
        market.append(f"Platform: {profile.platform_type}")
    if market:
        sections.append(f"Market: {', '.join(market)}")

    if profile.values:
        sections.append(f"VALUES (frame topics around these): {', '.join(profile.values)}")
    if profile.fears:
        sections.append(f"FEARS (address these concerns): {', '.join(profile.fears)}")
    if profile.aspirations:
        sections.append(
            f"ASPIRATIONS (connect to these goals): {', '.join(profile.aspirations)}"
        )
    if profile.cultural_context:
        sections.append(f"Cultural Context: {profile.cultural_context}")

    prefs = []
    if profile.preferred_tone:
        prefs.append(f"Tone: {profile.preferred_tone}")
    if profile.depth_preference:
        prefs.append(f"Depth: {profile.depth_preference}")
    if profile.political_sensitivity:
        prefs.append(f"Political Sensitivity: {profile.political_sensitivity}/10")
    if prefs:
        sections.append(f"Content Preferences: {', '.join(prefs)}")

    return "\n".join(sections)


def _sensitivity_block(profile: AudienceProfile) -> str:
    level = profile.political_sensitivity
    if not level or level < SENSITIVITY_THRESHOLD:
        return ""
    return f"""
IMPORTANT: This audience has HIGH political sensitivity ({level}/10).
- Present multiple perspectives fairly
- Avoid taking explicit political stances
- Focus on facts and let the audience draw conclusions"""


def get_cluster_prompt(
    items: list[SourceItem],
    profile: AudienceProfile,
    trending_context: list[TrendingContext] | None = None,
) -> str:
    stories = "\n".join(
        f"""
Story {i}:
- ID: {item.id}
- Title: {item.title}
- Category: {item.category}
- Source: {item.source}
- Published: {item.published_at.isoformat() if item.published_at else "Unknown"}
- Summary: {item.brief}..."""
        for i, item in enumerate(items, start=1)
    )

    trending = ""
    if trending_context:
        lines = "\n".join(
            f"- {t.trend_query} ({', '.join(t.platforms)})" for t in trending_context
        )
        trending = f"\n\nTRENDING TOPICS (consider how stories connect to these trends):\n{lines}"

    return f"""{build_audience_context(profile)}

STORIES TO CLUSTER:
{stories}
{trending}

Group these stories into thematic clusters. Each cluster should:
1. Connect at least 2 stories by a meaningful theme
2. Be relevant to the target audience's values and concerns
3. Have potential for educational video content

Return JSON:
{{
  "clusters": [
    {{
      "theme": "Short, engaging theme name (5-8 words)",
      "keywords": ["keyword1", "keyword2", "keyword3"],
      "story_ids": ["id1", "id2"],
      "relevance_score": 85,
      "audience_relevance": "One sentence on why this theme matters to this audience"
    }}
  ]
}}

Rules:
- Each story can appear in multiple clusters if relevant
- Relevance score 1-100 based on timeliness, audience fit, and cross-story connections
- Create 1-5 clusters depending on how many meaningful themes emerge
- If stories don't have strong connections, create fewer clusters
- Use only story IDs listed above
- Return ONLY the JSON, no other text"""


def _trending_section(trending_context: list[TrendingContext] | None) -> str:
    if not trending_context:
        return ""
    parts = []
    for trend in trending_context:
        section = f"- {trend.trend_query} (trending on: {', '.join(trend.platforms)})"
        if trend.viral_posts:
            section += "\n  Sample viral posts:"
            for post in trend.viral_posts[:2]:
                section += (
                    f'\n  - [{post.platform}] "{post.content[:100]}..." '
                    f"(engagement: {post.engagement_score})"
                )
        parts.append(section)
    return "\n\nRELATED TRENDING TOPICS:\n" + "\n".join(parts)


def get_proposal_prompt(
    cluster: TopicCluster,
    items: list[SourceItem],
    profile: AudienceProfile,
    duration_type: str,
    duration_seconds: int,
    comparison_regions: list[str],
    trending_context: list[TrendingContext] | None = None,
) -> str:
    num_points = talking_point_count(profile.depth_preference, duration_seconds)
    stories = "\n---\n".join(
        f"""
Title: {item.title}
Source: {item.source}
Summary: {item.summary or item.content[:800]}"""
        for item in items
    )
    regions = ", ".join(comparison_regions) or "None specified"

    return f"""{build_audience_context(profile)}
{_sensitivity_block(profile)}

CLUSTER THEME: {cluster.theme}
KEYWORDS: {', '.join(cluster.keywords)}

SOURCE STORIES:
{stories}
{_trending_section(trending_context)}

VIDEO CONFIGURATION:
- Duration: {duration_seconds} seconds ({duration_type})
- Number of talking points: {num_points}
- Comparison regions: {regions}

TITLE INSTRUCTIONS:
{tone_instructions(profile.preferred_tone)}

TALKING POINTS INSTRUCTIONS:
{detail_level(profile.depth_preference)}
- Total duration of all talking points must equal {duration_seconds} seconds
- Distribute time based on importance and complexity

Generate a topic proposal that speaks DIRECTLY to this audience. Return JSON:
{{
  "title": "Compelling title following tone instructions",
  "hook": "2-3 sentences on why this matters NOW to THIS SPECIFIC AUDIENCE.",
  "audience_care_statement": "2 sentences on why {profile.name} should care about this topic.",
  "talking_points": [
    {{
      "point": "Main talking point",
      "supporting_detail": "Supporting explanation following depth instructions",
      "duration_estimate_seconds": 60,
      "audience_framing": "How this point connects to the audience's values or fears"
    }}
  ],
  "research_suggestions": [
    {{
      "query": "Specific search query to find supporting data",
      "type": "statistic|study|expert_opinion",
      "reason": "Why this research would strengthen the proposal for this audience"
    }}
  ]
}}

Return ONLY the JSON, no other text."""


def get_research_prompt(
    topic: str,
    query: ResearchSuggestion,
    audience_region: str | None = None,
) -> str:
    region = ""
    if audience_region:
        region = (
            f"\nTarget audience region: {audience_region} "
            "(prioritize regional sources where relevant)"
        )

    return f"""Topic: {topic}
Research Query: {query.query}
Source Type Needed: {query.type}
Purpose: {query.reason}{region}

Suggest {_RESEARCH_ASKS[query.type]} that would support this topic.

Return JSON:
{{
  "citations": [
    {{
      "title": "Specific source title",
      "url": "https://example.com/specific-page",
      "snippet": "Relevant quote or data point from this source (50-100 words)",
      "relevance_to_audience": "Why this matters to the audience"
    }}
  ]
}}

Requirements:
- Suggest 2-3 credible sources
- Use real organization names
- Snippets should read like real quotes or data, not placeholders
- Return ONLY JSON, no other text"""
