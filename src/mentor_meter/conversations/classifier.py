"""Keyword heuristics over mentorship transcripts.

Detects discussed topics and suggests which documents the founder may want
generated next. Nothing here touches the usage ledger.
"""

import re
from dataclasses import dataclass, field
from typing import Any

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "funding": ("funding", "investment", "investor", "raise", "capital", "money", "financial"),
    "product": ("product", "feature", "development", "build", "mvp", "prototype"),
    "market": ("market", "customer", "user", "target", "audience", "segment"),
    "strategy": ("strategy", "plan", "approach", "roadmap", "vision", "goal"),
    "team": ("team", "hiring", "staff", "employee", "founder", "cofounder"),
    "technology": ("technology", "tech", "platform", "software", "system", "code"),
    "business_model": ("business model", "revenue", "monetization", "pricing", "subscription"),
    "growth": ("growth", "scale", "expand", "acquisition", "retention", "metrics"),
}

# Document type -> topics that make it worth suggesting.
DOCUMENT_TOPICS: dict[str, tuple[str, ...]] = {
    "pitch_deck": ("funding",),
    "business_plan": ("strategy", "business_model"),
    "market_analysis": ("market", "growth"),
}

# Phrase fallback when no topic analysis is supplied.
DOCUMENT_PATTERNS: dict[str, re.Pattern] = {
    "pitch_deck": re.compile(r"pitch deck|investor presentation|funding presentation", re.I),
    "business_plan": re.compile(r"business plan|strategic plan|planning", re.I),
    "market_analysis": re.compile(r"market analysis|market research|competition", re.I),
}

POSITIVE_WORDS = ("great", "good", "excellent", "amazing", "perfect", "love", "excited", "confident")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "worried", "concerned", "frustrated", "difficult")

USER_CONTEXT_CHARS = 1000


@dataclass
class TranscriptAnalysis:
    key_topics: list[str]
    message_stats: dict[str, Any]
    sentiment: dict[str, Any]
    insights: list[dict[str, Any]] = field(default_factory=list)
    suggested_documents: list[str] = field(default_factory=list)
    user_context: str = ""


def _content(message: dict[str, Any]) -> str:
    return str(message.get("content") or "")


def _by_role(messages: list[dict[str, Any]], role: str) -> list[dict[str, Any]]:
    return [m for m in messages if m.get("role") == role]


def detect_topics(messages: list[dict[str, Any]]) -> list[str]:
    text = " ".join(_content(m) for m in messages).lower()
    return [
        topic for topic, keywords in TOPIC_KEYWORDS.items()
        if any(keyword in text for keyword in keywords)
    ]


def message_stats(messages: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(messages)
    lengths = [len(_content(m)) for m in messages]
    return {
        "total_messages": total,
        "user_messages": len(_by_role(messages, "user")),
        "assistant_messages": len(_by_role(messages, "assistant")),
        "avg_message_length": round(sum(lengths) / total, 1) if total else 0.0,
    }


def analyze_sentiment(user_messages: list[dict[str, Any]]) -> dict[str, Any]:
    text = " ".join(_content(m) for m in user_messages).lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in text)
    negative = sum(1 for word in NEGATIVE_WORDS if word in text)
    total = positive + negative
    if total == 0:
        return {"type": "neutral", "confidence": 0.5}
    ratio = positive / total
    if ratio > 0.6:
        return {"type": "positive", "confidence": round(ratio, 2)}
    if ratio < 0.4:
        return {"type": "negative", "confidence": round(1 - ratio, 2)}
    return {"type": "mixed", "confidence": 0.6}


def classify_document_opportunities(
    messages: list[dict[str, Any]],
    topics: list[str] | None = None,
) -> list[str]:
    """Return the document types worth suggesting for this transcript.

    With ``topics`` the suggestion follows the detected topics; without them
    the founder's own words are matched against fixed phrases.
    """
    if topics is not None:
        return [
            doc for doc, triggers in DOCUMENT_TOPICS.items()
            if any(t in topics for t in triggers)
        ]
    user_text = " ".join(_content(m) for m in _by_role(messages, "user"))
    return [doc for doc, pattern in DOCUMENT_PATTERNS.items() if pattern.search(user_text)]


def analyze_transcript(messages: list[dict[str, Any]]) -> TranscriptAnalysis:
    user_messages = _by_role(messages, "user")
    topics = detect_topics(messages)
    stats = message_stats(messages)

    insights = []
    if stats["user_messages"] > stats["assistant_messages"]:
        insights.append({
            "type": "engagement",
            "message": "High founder engagement in the conversation",
            "confidence": 0.8,
        })
    if "funding" in topics:
        insights.append({
            "type": "opportunity",
            "message": "Funding discussed; consider generating pitch deck materials",
            "confidence": 0.9,
        })
    if "product" in topics and "market" in topics:
        insights.append({
            "type": "strategy",
            "message": "Product-market fit discussion detected",
            "confidence": 0.85,
        })

    return TranscriptAnalysis(
        key_topics=topics,
        message_stats=stats,
        sentiment=analyze_sentiment(user_messages),
        insights=insights,
        suggested_documents=classify_document_opportunities(messages, topics),
        user_context=" ".join(_content(m) for m in user_messages)[:USER_CONTEXT_CHARS],
    )
