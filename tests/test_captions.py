import pytest

from transcription.captions import (
    CaptionSegment,
    captions_payload,
    from_milliseconds,
    normalize_assemblyai,
    normalize_openai,
)


class TestCaptionSegment:
    def test_valid_segment(self):
        seg = CaptionSegment(start=0.0, end=1.5, text="hello")
        assert seg.to_dict() == {"start": 0.0, "end": 1.5, "text": "hello"}

    @pytest.mark.parametrize("start,end", [(1.0, 1.0), (2.0, 1.0), (-0.5, 1.0), (float("nan"), 1.0)])
    def test_invariant_violations(self, start, end):
        with pytest.raises(ValueError):
            CaptionSegment(start=start, end=end, text="x")

    def test_immutable(self):
        seg = CaptionSegment(0.0, 1.0, "x")
        with pytest.raises(AttributeError):
            seg.text = "y"

    def test_from_dict_coerces_numbers(self):
        seg = CaptionSegment.from_dict({"start": "0.5", "end": 2, "text": "hi"})
        assert seg == CaptionSegment(0.5, 2.0, "hi")


class TestNormalizeOpenAI:
    def test_segments_in_seconds(self):
        payload = {
            "text": "Hello there. General Kenobi.",
            "segments": [
                {"id": 0, "start": 0.0, "end": 1.2, "text": " Hello there."},
                {"id": 1, "start": 1.2, "end": 2.8, "text": " General Kenobi."},
            ],
        }
        assert normalize_openai(payload) == [
            CaptionSegment(0.0, 1.2, "Hello there."),
            CaptionSegment(1.2, 2.8, "General Kenobi."),
        ]

    def test_words_when_no_segments(self):
        payload = {"words": [{"word": "Hi", "start": 0.1, "end": 0.4}]}
        assert normalize_openai(payload) == [CaptionSegment(0.1, 0.4, "Hi")]

    def test_text_only_becomes_one_caption(self):
        assert normalize_openai({"text": "Just text", "duration": 3.0}) == [CaptionSegment(0.0, 3.0, "Just text")]

    def test_nothing_said(self):
        assert normalize_openai({"text": "", "segments": []}) == []
        assert normalize_openai({}) == []

    def test_drops_zero_length_and_blank_entries_and_sorts(self):
        payload = {"segments": [
            {"start": 2.0, "end": 3.0, "text": "second"},
            {"start": 1.0, "end": 1.0, "text": "zero length"},
            {"start": 0.5, "end": 0.9, "text": "   "},
            {"start": 0.0, "end": 1.0, "text": "first"},
        ]}
        result = normalize_openai(payload)
        assert [s.text for s in result] == ["first", "second"]


class TestNormalizeAssemblyAI:
    def test_milliseconds_become_seconds(self):
        segments = from_milliseconds([{"start": 0, "end": 1500, "text": "one and a half"}])
        assert segments == [CaptionSegment(0.0, 1.5, "one and a half")]

    def test_sentences_preferred_over_words(self):
        payload = {
            "sentences": [
                {"text": "Hello world.", "start": 250, "end": 1500, "confidence": 0.9},
                {"text": "Bye.", "start": 1600, "end": 2100, "confidence": 0.9},
            ],
            "words": [{"text": "Hello", "start": 250, "end": 700}],
        }
        result = normalize_assemblyai(payload)
        assert result == [CaptionSegment(0.25, 1.5, "Hello world."), CaptionSegment(1.6, 2.1, "Bye.")]
        assert all(s.start < s.end for s in result)

    def test_words_fallback(self):
        payload = {"words": [{"text": "Hi", "start": 100, "end": 300}]}
        assert normalize_assemblyai(payload) == [CaptionSegment(0.1, 0.3, "Hi")]

    def test_empty_transcript(self):
        assert normalize_assemblyai({"sentences": [], "words": []}) == []


def test_captions_payload():
    assert captions_payload([CaptionSegment(0.0, 1.0, "a")]) == [{"start": 0.0, "end": 1.0, "text": "a"}]
