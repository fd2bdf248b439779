"""Tests for transcript topic and document heuristics."""

from mentor_meter.conversations.classifier import (
    analyze_sentiment,
    analyze_transcript,
    classify_document_opportunities,
    detect_topics,
    message_stats,
)


def msg(role, content):
    return {"role": role, "content": content}


class TestTopics:
    def test_detects_keywords(self):
        topics = detect_topics([msg("user", "We want to raise capital and grow our market")])
        assert "funding" in topics
        assert "market" in topics

    def test_no_topics(self):
        assert detect_topics([msg("user", "hello there")]) == []


class TestDocumentOpportunities:
    def test_from_topics(self):
        assert classify_document_opportunities([], ["funding", "strategy"]) == [
            "pitch_deck", "business_plan",
        ]

    def test_phrase_fallback_uses_user_messages(self):
        messages = [
            msg("user", "Can you help me with a pitch deck?"),
            msg("assistant", "Let's start with market research"),
        ]
        assert classify_document_opportunities(messages) == ["pitch_deck"]


class TestStatsAndSentiment:
    def test_message_stats(self):
        stats = message_stats([msg("user", "abcd"), msg("assistant", "ab")])
        assert stats == {
            "total_messages": 2,
            "user_messages": 1,
            "assistant_messages": 1,
            "avg_message_length": 3.0,
        }

    def test_empty_stats(self):
        assert message_stats([])["avg_message_length"] == 0.0

    def test_sentiment(self):
        assert analyze_sentiment([msg("user", "this is great, I love it")])["type"] == "positive"
        assert analyze_sentiment([msg("user", "I am worried and frustrated")])["type"] == "negative"
        assert analyze_sentiment([msg("user", "okay")]) == {"type": "neutral", "confidence": 0.5}


class TestAnalyzeTranscript:
    def test_full_analysis(self):
        analysis = analyze_transcript([
            msg("user", "We need investors for our product and a clear target customer"),
            msg("user", "I'm excited"),
            msg("assistant", "Sounds good"),
        ])
        assert {"funding", "product", "market"} <= set(analysis.key_topics)
        assert "pitch_deck" in analysis.suggested_documents
        insight_types = {i["type"] for i in analysis.insights}
        assert insight_types == {"engagement", "opportunity", "strategy"}
        assert analysis.user_context.startswith("We need investors")

    def test_user_context_truncated(self):
        analysis = analyze_transcript([msg("user", "x" * 5000)])
        assert len(analysis.user_context) == 1000
